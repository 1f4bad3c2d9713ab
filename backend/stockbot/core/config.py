"""Application configuration.

Environment variables override all defaults. Admin chats double as the
allow-list and as the recipients of notifications and login codes.
"""

import os
import warnings
from pathlib import Path
from typing import Dict, List


# Load .env for local development (safe no-op if not installed)
try:
    from dotenv import load_dotenv  # type: ignore

    _BACKEND_DIR = Path(__file__).resolve().parents[2]
    load_dotenv(dotenv_path=_BACKEND_DIR / ".env", override=False)
except Exception:
    pass


def _split(raw: str) -> List[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


def parse_admin_chats(raw: str) -> Dict[str, str]:
    """Parse ``"alice:123,bob:456"`` into an ordered ``{name: chat_id}`` map.

    A bare chat id without a name is keyed as ``admin<N>``.
    """
    admins: Dict[str, str] = {}
    for index, entry in enumerate(_split(raw), start=1):
        name, sep, chat_id = entry.partition(":")
        if not sep:
            name, chat_id = f"admin{index}", name
        admins[name.strip()] = chat_id.strip()
    return admins


class Settings:
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    DEBUG: bool = ENVIRONMENT == "development"

    # Document store
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./stockbot.db")

    # Telegram Bot (Must be set via .env, never in code)
    TELEGRAM_BOT_TOKEN: str = os.getenv("TELEGRAM_BOT_TOKEN", "")
    TELEGRAM_FILE_URL: str = "https://api.telegram.org/file/bot{token}/{path}"

    # Who may talk to the bot
    ADMIN_CHATS: Dict[str, str] = parse_admin_chats(os.getenv("ADMIN_CHATS", ""))
    STAFF_CHAT_IDS: List[str] = _split(os.getenv("STAFF_CHAT_IDS", ""))
    if not ADMIN_CHATS:
        warnings.warn(
            "ADMIN_CHATS is not set. Nobody is authorized to use the bot "
            "and login codes have no recipient.",
            RuntimeWarning,
        )

    # Sale ingestion
    SALE_POLL_INTERVAL_SECONDS: float = float(os.getenv("SALE_POLL_INTERVAL_SECONDS", "5"))
    SALE_QUANTITY_POLICY: str = os.getenv("SALE_QUANTITY_POLICY", "local")  # "local" | "upstream"
    SALE_DEFAULT_LOCATION: str = os.getenv("SALE_DEFAULT_LOCATION", "market")
    BYORDER_LIMIT: int = int(os.getenv("BYORDER_LIMIT", "10"))

    # CORS for the admin web front end
    CORS_ORIGINS: List[str] = _split(
        os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000")
    )

    # Rate limiting on the login code endpoints
    RATE_LIMIT_REQUESTS: int = int(os.getenv("RATE_LIMIT_REQUESTS", "20"))
    RATE_LIMIT_WINDOW_SECONDS: int = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))

    @property
    def admin_chat_ids(self) -> List[str]:
        return list(self.ADMIN_CHATS.values())

    @property
    def allowed_chat_ids(self) -> List[str]:
        return self.admin_chat_ids + [c for c in self.STAFF_CHAT_IDS if c not in self.ADMIN_CHATS.values()]

    def is_allowed(self, chat_id) -> bool:
        return str(chat_id) in self.allowed_chat_ids

    def is_admin(self, chat_id) -> bool:
        return str(chat_id) in self.admin_chat_ids


settings = Settings()
