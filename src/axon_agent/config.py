"""axon_agent.config

Central configuration.

Keep it simple: read environment variables with sane defaults.

This module also supports loading a local `.env` file for developer
convenience. `.env` is git-ignored.

Each external capability (model, search, sandbox) is keyed off its own
credential. A missing credential degrades that capability only; it never
stops the process from starting.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


class ConfigurationError(RuntimeError):
    """A capability was used without its credential being configured."""


def _load_dotenv_best_effort() -> None:
    """Best-effort `.env` loader.

    Supported format: `KEY=VALUE` per line, with optional quotes.
    Lines starting with `#` are ignored.

    Only sets keys that are not already present in `os.environ`.
    """

    try:
        env_path = Path.cwd() / ".env"
        if not env_path.exists() or not env_path.is_file():
            return

        for raw in env_path.read_text(encoding="utf-8").splitlines():
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            if "=" not in line:
                continue
            k, v = line.split("=", 1)
            key = k.strip()
            val = v.strip().strip('"').strip("'")
            if not key:
                continue
            os.environ.setdefault(key, val)
    except (OSError, ValueError):
        # Never fail app startup due to dotenv parsing.
        return


# Load `.env` once at import time.
_load_dotenv_best_effort()

SUPPORTED_MODELS: tuple[str, ...] = (
    "gpt-5.2",
    "gpt-5-mini",
    "gpt-5-nano",
    "gpt-4.1",
    "gpt-4.1-mini",
    "gpt-4o-mini",
)

DEFAULT_MODEL: str = "gpt-4.1-mini"

_TRUTHY = {"1", "true", "True", "yes"}


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        v = float(raw)
    except ValueError:
        return default
    return v if v > 0 else default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        v = int(raw)
    except ValueError:
        return default
    return v if v > 0 else default


@dataclass(frozen=True)
class AppConfig:
    openai_api_key: str | None = None
    openai_model: str = DEFAULT_MODEL
    tavily_api_key: str | None = None
    e2b_api_key: str | None = None
    fake_llm: bool = False
    # Also offer the provider's hosted web search tool to the model.
    hosted_web_search: bool = False

    max_tool_rounds: int = 16
    model_timeout_s: float = 60.0
    search_timeout_s: float = 20.0
    browse_timeout_s: float = 20.0
    sandbox_timeout_s: float = 120.0
    # Upper bound on a sandbox session's life, enforced by the sandbox service.
    sandbox_lifetime_s: float = 24 * 60 * 60.0

    host: str = "0.0.0.0"
    port: int = 3001
    log_dir: Path = Path("logs")

    @property
    def model_configured(self) -> bool:
        return bool(self.openai_api_key) or self.fake_llm

    def capabilities(self) -> dict[str, bool]:
        return {
            "model": self.model_configured,
            "search": bool(self.tavily_api_key),
            "sandbox": bool(self.e2b_api_key),
        }


def load_config() -> AppConfig:
    model = os.environ.get("OPENAI_MODEL", DEFAULT_MODEL)
    if model not in SUPPORTED_MODELS:
        model = DEFAULT_MODEL

    return AppConfig(
        openai_api_key=os.environ.get("OPENAI_API_KEY") or None,
        openai_model=model,
        tavily_api_key=os.environ.get("TAVILY_API_KEY") or None,
        e2b_api_key=os.environ.get("E2B_API_KEY") or None,
        fake_llm=os.environ.get("AXON_FAKE_LLM", "0") in _TRUTHY,
        hosted_web_search=os.environ.get("AXON_HOSTED_WEB_SEARCH", "0") in _TRUTHY,
        max_tool_rounds=_env_int("AXON_MAX_TOOL_ROUNDS", 16),
        model_timeout_s=_env_float("AXON_MODEL_TIMEOUT_S", 60.0),
        search_timeout_s=_env_float("AXON_SEARCH_TIMEOUT_S", 20.0),
        browse_timeout_s=_env_float("AXON_BROWSE_TIMEOUT_S", 20.0),
        sandbox_timeout_s=_env_float("AXON_SANDBOX_TIMEOUT_S", 120.0),
        sandbox_lifetime_s=_env_float("AXON_SANDBOX_LIFETIME_S", 24 * 60 * 60.0),
        port=_env_int("PORT", 3001),
        log_dir=Path(os.environ.get("AXON_LOG_DIR") or "logs"),
    )
