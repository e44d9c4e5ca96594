from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


PLACEHOLDER_COMPRESSION_KEYS = frozenset({"your_public_key_here", "your_secret_key_here"})


class CoreSettings(BaseSettings):
    ENV: str = Field(default="development", validation_alias="APP_ENV")
    APP_NAME: str = "dispatch-dashboard-api"
    SESSION_SECRET_KEY: str = "change-this-session-secret"
    ALLOWED_ORIGINS: str = "http://localhost:3000"

    # Single upload limit shared by every PDF entry point.
    MAX_UPLOAD_MB: int = 25

    ILOVEPDF_PUBLIC_KEY: str = ""
    ILOVEPDF_SECRET_KEY: str = ""
    ILOVEPDF_API_URL: str = "https://api.ilovepdf.com/v1"
    COMPRESSION_ENABLED: bool = True
    COMPRESSION_LEVEL: str = "recommended"
    COMPRESSION_TIMEOUT_SECONDS: int = 60
    COMPRESSION_MAX_ATTEMPTS: int = 3
    COMPRESSION_BACKOFF_SECONDS: float = 1.0
    COMPRESSION_MAX_API_MB: int = 100
    COMPRESSION_TEMP_DIR: str = "/tmp/pdf-compression"

    OPENAI_API_KEY: str = ""
    AI_EXTRACTION_MODELS: str = "gpt-4o-mini,gpt-4o,gpt-4.1-mini"
    AI_TIMEOUT_SECONDS: float = 30.0
    AI_MAX_ATTEMPTS_PER_MODEL: int = 2
    AI_BACKOFF_SECONDS: float = 1.0
    AI_MAX_OUTPUT_TOKENS: int = 2048

    SIGNED_URL_TTL_SECONDS: int = 3600

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def max_upload_bytes(self) -> int:
        return max(int(self.MAX_UPLOAD_MB or 25), 1) * 1024 * 1024

    @property
    def ai_models(self) -> list[str]:
        return [name.strip() for name in (self.AI_EXTRACTION_MODELS or "").split(",") if name.strip()]

    @property
    def allowed_origins(self) -> list[str]:
        return [origin.strip() for origin in (self.ALLOWED_ORIGINS or "").split(",") if origin.strip()]


settings = CoreSettings()
