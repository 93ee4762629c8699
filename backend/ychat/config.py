from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str
    store_key: str
    cloudinary_cloud_name: str
    cloudinary_upload_preset: str
    huggingface_api_key: str

    port: int = 10000
    cors_origins: str = "*"
    log_level: str = "INFO"

    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60
    refresh_token_expire_minutes: int = 60 * 24 * 30
    auth_email_domain: str = "ychat.app"
    session_file: str = ".ychat-session.json"

    ban_poll_interval_seconds: float = 60.0

    inference_base_url: str = "https://router.huggingface.co/hf-inference/models"
    inference_model: str = "gpt2"
    upload_base_url: str = "https://api.cloudinary.com/v1_1"
    cdn_base_url: str = "https://res.cloudinary.com"

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


# Required fields come from the environment; a missing store credential fails here.
settings = Settings()
