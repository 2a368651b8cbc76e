import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

_ROOT = Path(__file__).resolve().parents[1]
load_dotenv(_ROOT / ".env", override=False)
load_dotenv(Path(__file__).resolve().parent / ".env", override=False)


DEFAULT_MODEL = {
    "openai": "gpt-5-mini",
    "grok": "grok-4-fast",
    "gemini": "gemini-2.5-flash-lite",
    "anthropic": "claude-sonnet-4-5",
}


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./persona_chat.db"
    chat_provider: str = "openai"
    chat_model: str = DEFAULT_MODEL["openai"]
    max_completion_tokens: int = 2048
    # 0 sends the whole transcript on every turn
    context_max_messages: int = 0
    session_cookie_name: str = "persona_session"
    session_cookie_secure: bool = False
    session_ttl_days: int = 7
    seed_default_characters: bool = True


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}.")


# Normalizes Heroku/Railway style URLs to the psycopg2 driver
def normalize_database_url(url: Optional[str]) -> str:
    if not url:
        return Settings.database_url
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg2://", 1)
    return url


# Reads settings from the environment (after .env has been loaded)
def get_settings() -> Settings:
    provider = (os.getenv("CHAT_PROVIDER") or "openai").strip().lower()
    model = os.getenv("CHAT_MODEL") or DEFAULT_MODEL.get(provider) or ""
    if not model:
        raise RuntimeError(f"No default model for provider: {provider}. Set CHAT_MODEL.")

    return Settings(
        database_url=normalize_database_url(os.getenv("DATABASE_URL")),
        chat_provider=provider,
        chat_model=model,
        max_completion_tokens=_env_int("CHAT_MAX_COMPLETION_TOKENS", 2048),
        context_max_messages=max(0, _env_int("CHAT_CONTEXT_MAX_MESSAGES", 0)),
        session_cookie_name=os.getenv("SESSION_COOKIE_NAME") or "persona_session",
        session_cookie_secure=_env_bool("SESSION_COOKIE_SECURE", False),
        session_ttl_days=_env_int("SESSION_TTL_DAYS", 7),
        seed_default_characters=_env_bool("SEED_DEFAULT_CHARACTERS", True),
    )
