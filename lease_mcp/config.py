"""Runtime settings for the LeaseCIP server, read from the environment."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

_ENV_FILE = Path(__file__).resolve().parent.parent / ".env"

_TRUTHY = {"1", "true", "yes", "on"}


def load_env_file(path: Path = _ENV_FILE) -> None:
    """Load KEY=VALUE lines from *path* into ``os.environ`` (no extra dependency).

    Existing environment variables always win.
    """
    if not path.is_file():
        return
    for line in path.read_text().splitlines():
        line = line.strip()
        if line and not line.startswith("#") and "=" in line:
            k, _, v = line.partition("=")
            os.environ.setdefault(k.strip(), v.strip())


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r; using %s", name, raw, default)
        return default
    return value if value > 0 else default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r; using %s", name, raw, default)
        return default
    return value if value > 0 else default


@dataclass(frozen=True)
class Settings:
    """Server knobs. Every field has a safe default."""

    db_path: str = ""
    fetch_timeout_seconds: float = 10.0
    top_n_rates: int = 3
    price_alert_min_change: float = 5.0
    strict_model_match: bool = False


def load_settings() -> Settings:
    """Build :class:`Settings` from ``LEASECIP_*`` environment variables."""
    return Settings(
        db_path=os.environ.get("LEASECIP_DB_PATH", "").strip(),
        fetch_timeout_seconds=_env_float("LEASECIP_FETCH_TIMEOUT_SECONDS", 10.0),
        top_n_rates=_env_int("LEASECIP_TOP_N_RATES", 3),
        price_alert_min_change=_env_float("LEASECIP_PRICE_ALERT_MIN_CHANGE", 5.0),
        strict_model_match=(
            os.environ.get("LEASECIP_STRICT_MODEL_MATCH", "").strip().lower() in _TRUTHY
        ),
    )
