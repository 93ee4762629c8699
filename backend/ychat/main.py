import logging
from contextlib import asynccontextmanager
from fastapi import Body, FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from .config import settings
from .inference import InferenceClient, resolve_preset
from .models import utcnow
from .schemas import ChatIn, ChatOut

logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.inference = InferenceClient()
    logger.info("Y-Chat inference proxy running on port %s", settings.port)
    yield


app = FastAPI(title="Y-Chat Inference Proxy", lifespan=lifespan)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_origins.split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Dependency
def get_inference(request: Request) -> InferenceClient:
    return request.app.state.inference


@app.get("/health")
async def health():
    return {"status": "ok", "message": "Y-Chat inference proxy is running"}


@app.post("/api/chat", response_model=ChatOut)
async def chat(payload: ChatIn | None = Body(default=None), inference: InferenceClient = Depends(get_inference)):
    if payload is None or not payload.message:
        return JSONResponse(status_code=400, content={"error": "Message is required"})
    try:
        preset = resolve_preset(payload.model)
        logger.info("[%s] Model: %s, Message: %s", utcnow().isoformat(), payload.model, payload.message)
        response = await inference.generate(payload.message, preset)
        return ChatOut(response=response, model=preset, timestamp=utcnow())
    except Exception as exc:
        logger.exception("Chat request failed")
        return JSONResponse(status_code=500, content={"error": "Internal server error", "details": str(exc)})


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
