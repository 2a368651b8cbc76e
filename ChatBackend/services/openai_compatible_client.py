import os
from typing import Dict, Optional, Tuple

from openai import AsyncOpenAI


_PROVIDER_CFG: Dict[str, Dict[str, object]] = {
    "openai": {
        "env": ("OPENAI_API_KEY", "AI_INTEGRATIONS_OPENAI_API_KEY"),
        "base_url_env": ("OPENAI_BASE_URL", "AI_INTEGRATIONS_OPENAI_BASE_URL"),
        "base_url": None,
    },
    "grok": {"env": ("GROK_API_KEY",), "base_url_env": (), "base_url": "https://api.x.ai/v1"},
    "gemini": {"env": ("GEMINI_API_KEY",), "base_url_env": (), "base_url": "https://generativelanguage.googleapis.com/v1beta/openai"},
    "anthropic": {"env": ("ANTHROPIC_API_KEY",), "base_url_env": (), "base_url": "https://api.anthropic.com/v1"},
}


def _first_env(names: Tuple[str, ...]) -> Optional[str]:
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return None


# Create an async OpenAI-compatible client for multiple model providers
def get_async_openai_compatible_client(provider: Optional[str]) -> AsyncOpenAI:
    provider_l = (provider or "openai").strip().lower()
    cfg = _PROVIDER_CFG.get(provider_l)
    if cfg is None:
        raise ValueError(f"Unsupported provider: {provider_l}")

    env_vars = cfg["env"]
    api_key = _first_env(env_vars)
    if not api_key:
        raise ValueError(f"Missing API key for provider '{provider_l}'. Set {env_vars[0]}.")

    kwargs = {"api_key": api_key}
    base_url = _first_env(cfg["base_url_env"]) or cfg["base_url"]
    if base_url:
        kwargs["base_url"] = base_url
    return AsyncOpenAI(**kwargs)
