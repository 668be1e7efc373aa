"""
Runtime configuration for the reflection core.

A single explicitly constructed object replaces module-level switches
(debug logging, pacing delays, validation mode). Values can be read from
the environment or a .env file.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

ADVANCEMENT_POLICIES = ("remote", "local", "both")
VALIDATION_MODES = ("ai_driven", "legacy")


def load_dotenv() -> None:
    """Load .env file into os.environ (only vars not already set)."""
    for parent in [Path.cwd()] + list(Path(__file__).resolve().parents):
        env_path = parent / ".env"
        if env_path.exists():
            for line in env_path.read_text().splitlines():
                line = line.strip()
                if not line or line.startswith("#"):
                    continue
                if "=" in line:
                    key, value = line.split("=", 1)
                    key, value = key.strip(), value.strip()
                    if key and key not in os.environ:
                        os.environ[key] = value
            break  # only load the first .env found


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    return float(raw) if raw else default


@dataclass
class ReflectionConfig:
    """
    Settings shared by the orchestrator and its collaborators.

    advancement:
        "remote" trusts the chat function's phase_advanced flag,
        "local" uses the heuristic validator instead,
        "both" requires the two to agree.
    validation_mode:
        "ai_driven" is the minimal length check, "legacy" runs the
        per-phase keyword heuristics.
    """

    debug: bool = False
    phase_opening_delay: float = 0.1
    clear_message_delay: float = 1.0
    closing_delay: float = 3.0
    advancement: str = "remote"
    validation_mode: str = "ai_driven"
    welcome_cache_ttl: float = 300.0
    supabase_url: str = ""
    supabase_key: str = ""

    def __post_init__(self):
        if self.advancement not in ADVANCEMENT_POLICIES:
            raise ValueError(f"Unknown advancement policy: {self.advancement}")
        if self.validation_mode not in VALIDATION_MODES:
            raise ValueError(f"Unknown validation mode: {self.validation_mode}")
        if self.closing_delay < self.clear_message_delay:
            raise ValueError("closing_delay must not be shorter than clear_message_delay")

    @classmethod
    def from_env(cls) -> "ReflectionConfig":
        load_dotenv()
        return cls(
            debug=_env_bool("BEALIGNED_DEBUG", False),
            phase_opening_delay=_env_float("BEALIGNED_PHASE_OPENING_DELAY", 0.1),
            clear_message_delay=_env_float("BEALIGNED_CLEAR_DELAY", 1.0),
            closing_delay=_env_float("BEALIGNED_CLOSING_DELAY", 3.0),
            advancement=os.environ.get("BEALIGNED_ADVANCEMENT", "remote").strip() or "remote",
            validation_mode=os.environ.get("BEALIGNED_VALIDATION_MODE", "ai_driven").strip() or "ai_driven",
            welcome_cache_ttl=_env_float("BEALIGNED_WELCOME_CACHE_TTL", 300.0),
            supabase_url=os.environ.get("SUPABASE_URL", "").strip().rstrip("/"),
            supabase_key=(
                os.environ.get("SUPABASE_KEY", "").strip()
                or os.environ.get("SUPABASE_ANON_KEY", "").strip()
            ),
        )

    @property
    def has_supabase(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)


def configure_logging(config: ReflectionConfig) -> None:
    """Route bealigned logs to stderr; DEBUG only when debug is enabled."""
    logging.basicConfig(level=logging.INFO, format="%(name)s - %(levelname)s - %(message)s")
    logging.getLogger("bealigned").setLevel(logging.DEBUG if config.debug else logging.INFO)
