from __future__ import annotations

import os
from pathlib import Path
from typing import List


def _env_flag(name: str) -> bool:
    return (os.environ.get(name) or "").strip() in {"1", "true", "True", "yes"}


def _ws_from_http(url: str) -> str:
    if url.startswith("https://"):
        return "wss://" + url[len("https://"):]
    if url.startswith("http://"):
        return "ws://" + url[len("http://"):]
    return url


class Settings:
    """Centralized configuration for the chat client and the reference chat server."""

    def __init__(self) -> None:
        base_dir = Path(__file__).resolve().parent
        data_root_default = base_dir.parent / "data"

        # ---- Chat client ----
        self.api_base_url: str = (
            os.environ.get("COACHCHAT_API_BASE_URL") or "http://127.0.0.1:8000"
        ).rstrip("/")
        self.ws_base_url: str = (
            os.environ.get("COACHCHAT_WS_BASE_URL") or _ws_from_http(self.api_base_url)
        ).rstrip("/")
        self.request_timeout: float = float(os.environ.get("COACHCHAT_REQUEST_TIMEOUT") or "15")
        self.reconnect_base_delay: float = float(
            os.environ.get("COACHCHAT_RECONNECT_BASE_DELAY") or "1.0"
        )
        self.reconnect_max_delay: float = float(
            os.environ.get("COACHCHAT_RECONNECT_MAX_DELAY") or "30.0"
        )
        self.reconnect_max_attempts: int = int(
            os.environ.get("COACHCHAT_RECONNECT_MAX_ATTEMPTS") or "5"
        )
        self.token: str | None = os.environ.get("COACHCHAT_TOKEN") or None

        # ---- Reference chat server ----
        self.data_root: Path = Path(
            os.environ.get("COACHCHAT_DATA_ROOT") or data_root_default
        ).expanduser()
        self.app_db_path: Path = Path(
            os.environ.get("COACHCHAT_DB_PATH") or (self.data_root / "coachchat.db")
        ).expanduser()
        self.media_root: Path = self.data_root / "media"
        # In production you MUST set COACHCHAT_JWT_SECRET. The dev secret only keeps local demos easy.
        self.jwt_secret: str = os.environ.get("COACHCHAT_JWT_SECRET") or "dev-secret-change-me"
        self.token_ttl_days: int = int(os.environ.get("COACHCHAT_TOKEN_TTL_DAYS") or "7")
        self.max_upload_mb: int = int(os.environ.get("COACHCHAT_MAX_UPLOAD_MB") or "20")
        self.ws_require_auth: bool = _env_flag("COACHCHAT_WS_REQUIRE_AUTH")
        self.host: str = os.environ.get("COACHCHAT_HOST") or "127.0.0.1"
        self.port: int = int(os.environ.get("COACHCHAT_PORT") or "8000")

        cors = os.environ.get("COACHCHAT_CORS_ORIGINS", "*")
        if cors.strip() == "*":
            self.cors_origins: List[str] = ["*"]
        else:
            self.cors_origins = [
                origin.strip() for origin in cors.split(",") if origin.strip()
            ]


settings = Settings()
