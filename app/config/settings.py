import os
from functools import lru_cache

from pydantic import BaseModel, Field


class Settings(BaseModel):
    QUOTE_API_KEY: str = ""
    QUOTE_API_BASE_URL: str = "https://www.alphavantage.co"
    QUOTE_FALLBACK_PATH: str | None = "data/fallback_quotes.jsonl"
    QUOTE_MAX_ATTEMPTS: int = Field(default=3, ge=1)
    QUOTE_BACKOFF_BASE_SEC: float = Field(default=1.0, ge=0)
    QUOTE_TIMEOUT_SEC: float = Field(default=10.0, gt=0)
    STREAM_SYMBOL: str = "AAPL"
    STREAM_POLL_INTERVAL_SEC: float = Field(default=60.0, gt=0)
    STREAM_KEEPALIVE_INTERVAL_SEC: float = Field(default=25.0, gt=0)

    @classmethod
    def from_env(cls) -> "Settings":
        raw = {
            "QUOTE_API_KEY": os.getenv("QUOTE_API_KEY", "").strip(),
            "QUOTE_API_BASE_URL": os.getenv("QUOTE_API_BASE_URL"),
            "QUOTE_FALLBACK_PATH": os.getenv("QUOTE_FALLBACK_PATH"),
            "QUOTE_MAX_ATTEMPTS": os.getenv("QUOTE_MAX_ATTEMPTS"),
            "QUOTE_BACKOFF_BASE_SEC": os.getenv("QUOTE_BACKOFF_BASE_SEC"),
            "QUOTE_TIMEOUT_SEC": os.getenv("QUOTE_TIMEOUT_SEC"),
            "STREAM_SYMBOL": os.getenv("STREAM_SYMBOL"),
            "STREAM_POLL_INTERVAL_SEC": os.getenv("STREAM_POLL_INTERVAL_SEC"),
            "STREAM_KEEPALIVE_INTERVAL_SEC": os.getenv("STREAM_KEEPALIVE_INTERVAL_SEC"),
        }
        # unset vars fall back to field defaults
        values = {k: v for k, v in raw.items() if v is not None}
        if values.get("QUOTE_FALLBACK_PATH", None) == "":
            values["QUOTE_FALLBACK_PATH"] = None
        if "STREAM_SYMBOL" in values:
            values["STREAM_SYMBOL"] = values["STREAM_SYMBOL"].strip().upper() or "AAPL"
        return cls.model_validate(values)


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
