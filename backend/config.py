"""Runtime settings read from the environment (and .env)."""

import os

from dotenv import load_dotenv
from pydantic import BaseModel

DEFAULT_CORS_ORIGINS = "http://localhost:3000,http://localhost:5173,http://127.0.0.1:5173"


class Settings(BaseModel):
    supabase_url: str | None = None
    supabase_anon_key: str | None = None
    dev_bypass_auth: bool = False
    app_url: str = "http://localhost:3000"
    cors_origins: list[str] = []
    http_timeout: float = 10.0
    log_level: str = "INFO"
    max_open_canvases: int = 256

    @property
    def has_backend(self) -> bool:
        return bool(self.supabase_url and self.supabase_anon_key)


def _flag(value: str | None) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    """Build Settings from the environment, loading .env first."""
    load_dotenv()
    origins = os.getenv("KINCANVAS_CORS_ORIGINS", DEFAULT_CORS_ORIGINS)
    return Settings(
        supabase_url=os.getenv("SUPABASE_URL") or None,
        supabase_anon_key=os.getenv("SUPABASE_ANON_KEY") or None,
        dev_bypass_auth=_flag(os.getenv("KINCANVAS_DEV_BYPASS_AUTH")),
        app_url=os.getenv("KINCANVAS_APP_URL", "http://localhost:3000").rstrip("/"),
        cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
        http_timeout=float(os.getenv("KINCANVAS_HTTP_TIMEOUT", "10.0")),
        log_level=os.getenv("KINCANVAS_LOG_LEVEL", "INFO").upper(),
        max_open_canvases=int(os.getenv("KINCANVAS_MAX_OPEN_CANVASES", "256")),
    )
