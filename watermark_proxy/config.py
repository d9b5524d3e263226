import logging
import os
import sys

from pydantic import BaseModel

DEFAULT_GEMINI_MODEL = "gemini-2.0-flash-exp-image-generation"
DEFAULT_OPENAI_IMAGE_MODEL = "gpt-image-1"
DEFAULT_PROVIDER_TIMEOUT = 120.0

LOGGER_NAME = "watermark_proxy"


def _env(name: str) -> str | None:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


class Settings(BaseModel):
    google_api_key: str | None = None
    openai_api_key: str | None = None
    gemini_model: str = DEFAULT_GEMINI_MODEL
    openai_image_model: str = DEFAULT_OPENAI_IMAGE_MODEL
    provider_timeout: float = DEFAULT_PROVIDER_TIMEOUT
    stats_kv_url: str | None = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            google_api_key=_env("GOOGLE_API_KEY"),
            openai_api_key=_env("OPENAI_API_KEY"),
            gemini_model=_env("GEMINI_MODEL") or DEFAULT_GEMINI_MODEL,
            openai_image_model=_env("OPENAI_IMAGE_MODEL") or DEFAULT_OPENAI_IMAGE_MODEL,
            provider_timeout=float(_env("PROVIDER_TIMEOUT") or DEFAULT_PROVIDER_TIMEOUT),
            stats_kv_url=_env("STATS_KV_URL"),
            log_level=(_env("LOG_LEVEL") or "INFO").upper(),
        )

    def configured_providers(self) -> dict[str, bool]:
        return {
            "gemini": bool(self.google_api_key),
            "openai": bool(self.openai_api_key),
        }


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Attach a single stdout handler to the package logger.

    Safe to call more than once: an already configured logger only has its
    level updated.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    logger.addHandler(handler)
    return logger
