"""
Configuration

Settings come from the environment, optionally seeded from a .env file.

Environment:
    TARGET_CURRENCY               Reporting currency (default EUR)
    DUST_THRESHOLD                Hide holdings worth this much or less (default 0)
    HTTP_TIMEOUT                  Seconds per request (default 30)
    FX_PROVIDERS                  Comma-separated provider order (default: all)
    AUTH_FALLBACK                 Keep going when a source rejects credentials
    MAX_WORKERS                   Sources fetched in parallel (default 4)

    BITVAVO_API_KEY / BITVAVO_API_SECRET
    BITVAVO_BASE_URL, BITVAVO_QUOTE_CURRENCY, BITVAVO_ACCESS_WINDOW
    TRADING212_API_KEY
    TRADING212_BASE_URL, TRADING212_FALLBACK_CURRENCY
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from dotenv import load_dotenv

from .currency import looks_like_currency_code
from .fx import PROVIDER_NAMES
from .http import DEFAULT_TIMEOUT

TRUE_VALUES = ("1", "true", "yes", "on")


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _get_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in TRUE_VALUES


def _get_currency(name: str, default: str) -> str:
    raw = os.getenv(name) or default
    code = looks_like_currency_code(raw)
    if code is None:
        raise ValueError(f"{name} must be a currency code, got {raw!r}")
    return code


@dataclass
class Settings:
    """Engine settings for one process."""

    target_currency: str = "EUR"
    dust_threshold: float = 0.0
    http_timeout: float = DEFAULT_TIMEOUT
    fx_providers: Tuple[str, ...] = PROVIDER_NAMES
    auth_fallback: bool = False
    max_workers: int = 4
    sources: Dict[str, Dict] = field(default_factory=dict)


def get_source_config() -> Dict[str, Dict]:
    """
    Load holding source configurations from environment.

    A source is only included when its credentials are present.

    Returns:
        Dictionary of source configs keyed by display name
    """
    sources = {}

    # Bitvavo
    if os.getenv("BITVAVO_API_KEY") and os.getenv("BITVAVO_API_SECRET"):
        config = {
            "source": "bitvavo",
            "api_key": os.getenv("BITVAVO_API_KEY"),
            "api_secret": os.getenv("BITVAVO_API_SECRET"),
            "quote_currency": _get_currency("BITVAVO_QUOTE_CURRENCY", "EUR"),
            "access_window": _get_int("BITVAVO_ACCESS_WINDOW", 60000),
        }
        if os.getenv("BITVAVO_BASE_URL"):
            config["base_url"] = os.getenv("BITVAVO_BASE_URL")
        sources["Bitvavo"] = config

    # Trading212
    if os.getenv("TRADING212_API_KEY"):
        config = {
            "source": "trading212",
            "api_key": os.getenv("TRADING212_API_KEY"),
            "fallback_currency": _get_currency("TRADING212_FALLBACK_CURRENCY", "EUR"),
        }
        if os.getenv("TRADING212_BASE_URL"):
            config["base_url"] = os.getenv("TRADING212_BASE_URL")
        sources["Trading212"] = config

    return sources


def load_settings(env_file: Optional[str] = None) -> Settings:
    """
    Build Settings from the environment.

    Args:
        env_file: Optional .env path (default: search from the working directory)

    Returns:
        Settings instance

    Raises:
        ValueError: a variable is set but invalid
    """
    load_dotenv(env_file)

    providers = os.getenv("FX_PROVIDERS")
    if providers:
        fx_providers = tuple(p.strip().lower() for p in providers.split(",") if p.strip())
    else:
        fx_providers = PROVIDER_NAMES

    unknown = [p for p in fx_providers if p not in PROVIDER_NAMES]
    if unknown:
        raise ValueError(f"FX_PROVIDERS contains unknown providers: {', '.join(unknown)}")

    dust_threshold = _get_float("DUST_THRESHOLD", 0.0)
    if dust_threshold < 0:
        raise ValueError(f"DUST_THRESHOLD must not be negative, got {dust_threshold}")

    return Settings(
        target_currency=_get_currency("TARGET_CURRENCY", "EUR"),
        dust_threshold=dust_threshold,
        http_timeout=_get_float("HTTP_TIMEOUT", DEFAULT_TIMEOUT),
        fx_providers=fx_providers,
        auth_fallback=_get_bool("AUTH_FALLBACK"),
        max_workers=max(1, _get_int("MAX_WORKERS", 4)),
        sources=get_source_config(),
    )
