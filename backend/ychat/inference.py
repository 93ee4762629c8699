import logging
from typing import Any
import httpx
from .config import settings
from .errors import InferenceError

logger = logging.getLogger(__name__)

DEFAULT_PRESET = "V1"

# V1 is the full conversational preset, V1c the lighter one with shorter replies.
PRESETS = {
    "V1": {
        "max_new_tokens": 100,
        "temperature": 0.8,
        "top_p": 0.9,
        "repetition_penalty": 1.2,
    },
    "V1c": {
        "max_new_tokens": 50,
        "temperature": 0.7,
        "top_p": 0.85,
    },
}

APOLOGY = "すみません、応答の生成中にエラーが発生しました。({preset})"


def resolve_preset(model: Any) -> str:
    return model if isinstance(model, str) and model in PRESETS else DEFAULT_PRESET


class InferenceClient:
    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key or settings.huggingface_api_key
        self.model = model or settings.inference_model
        self.base_url = base_url or settings.inference_base_url
        self.transport = transport

    async def text_generation(self, prompt: str, parameters: dict) -> str:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        body = {"inputs": prompt, "parameters": parameters}
        async with httpx.AsyncClient(timeout=30.0, transport=self.transport) as client:
            r = await client.post(f"{self.base_url}/{self.model}", headers=headers, json=body)
        if r.status_code != 200:
            raise InferenceError(f"Inference API failed: {r.status_code} - {r.text}")
        data = r.json()
        if isinstance(data, list) and data:
            data = data[0]
        if not isinstance(data, dict) or "generated_text" not in data:
            raise InferenceError("Inference API returned no generated_text")
        return data["generated_text"]

    async def generate(self, message: str, preset: str) -> str:
        try:
            text = await self.text_generation(message, PRESETS[preset])
            return text.strip()
        except (InferenceError, httpx.HTTPError, ValueError) as exc:
            logger.error("%s generation error: %s", preset, exc)
            return APOLOGY.format(preset=preset)
