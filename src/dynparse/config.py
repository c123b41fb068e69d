"""Runtime configuration: a minimal .env loader plus environment-backed settings."""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, Field

ENV_PREFIX = "DYNPARSE_"

_ENV_LOADED = False


def load_dotenv(*, override: bool = False) -> None:
    """Load the first .env file found from the current directory upward."""
    global _ENV_LOADED
    if _ENV_LOADED and not override:
        return

    env_path = _find_env_file()
    if env_path is not None:
        for key, value in _parse_env_lines(env_path.read_text(encoding="utf-8")):
            if override or key not in os.environ:
                os.environ[key] = value

    _ENV_LOADED = True


def _parse_env_lines(text: str) -> list[tuple[str, str]]:
    pairs: list[tuple[str, str]] = []
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        line = line.removeprefix("export ").strip()
        key, sep, value = line.partition("=")
        key = key.strip()
        if not sep or not key:
            continue

        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
            value = value[1:-1]
        pairs.append((key, value))
    return pairs


def _find_env_file() -> Path | None:
    cwd = Path.cwd()
    for base in [cwd, *cwd.parents]:
        candidate = base / ".env"
        if candidate.is_file():
            return candidate
    return None


class ParserSettings(BaseModel):
    """Settings for the model backend, retry budget and script sandbox."""

    model_name: str = "gpt-4o"
    llm_provider: str = "openai"
    llm_api_base: str | None = None
    llm_api_key: str | None = None
    llm_timeout_s: float = Field(default=120.0, gt=0.0, le=600.0)
    llm_max_tokens: int | None = Field(default=None, gt=0, le=32768)
    llm_temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    llm_top_p: float | None = Field(default=None, gt=0.0, le=1.0)

    max_attempts: int = Field(default=3, ge=1, le=10)
    interpreter: str = "python3"
    execution_timeout_s: float | None = Field(default=45.0, gt=0.0)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ParserSettings:
        """
        Build settings from ``DYNPARSE_*`` variables (``DYNPARSE_MODEL_NAME``,
        ``DYNPARSE_MAX_ATTEMPTS``, ...). The process environment is read after
        loading ``.env``; pydantic coerces and validates the string values.
        """
        if environ is None:
            load_dotenv()
            environ = os.environ

        values: dict[str, str] = {}
        for name in cls.model_fields:
            raw = environ.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None and raw.strip():
                values[name] = raw.strip()
        return cls.model_validate(values)
