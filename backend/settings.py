from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path

from carecompanion_agent_core.models import DEFAULT_MAX_LOOPS

_ENV_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _load_local_env_file(path: Path) -> None:
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError:
        return
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if not _ENV_KEY_RE.fullmatch(key):
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]
        os.environ.setdefault(key, value)


def bootstrap_local_env() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    for candidate in (repo_root / ".env", repo_root / "backend/.env"):
        if candidate.exists():
            _load_local_env_file(candidate)


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_flag(name: str, default: bool = False) -> bool:
    return os.getenv(name, "true" if default else "false").lower() in {"1", "true", "yes"}


@dataclass(frozen=True)
class Settings:
    max_loops: int
    db_path: str
    anthropic_api_key: str | None
    anthropic_model: str
    anthropic_base_url: str
    anthropic_api_version: str
    max_tokens: int
    chat_timeout_seconds: float
    allow_anon: bool
    allowed_origins: tuple[str, ...]


def load_settings() -> Settings:
    api_key = (os.getenv("ANTHROPIC_API_KEY") or "").strip()
    origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
    return Settings(
        max_loops=max(1, _env_int("CARECOMPANION_MAX_LOOPS", DEFAULT_MAX_LOOPS)),
        db_path=os.getenv(
            "CARECOMPANION_DB_PATH",
            str(Path(__file__).resolve().parent / "carecompanion.sqlite"),
        ),
        anthropic_api_key=api_key or None,
        anthropic_model=(os.getenv("ANTHROPIC_MODEL") or "claude-haiku-4-5").strip(),
        anthropic_base_url=os.getenv("ANTHROPIC_API_BASE_URL", "https://api.anthropic.com/v1").rstrip("/"),
        anthropic_api_version=os.getenv("ANTHROPIC_API_VERSION", "2023-06-01"),
        max_tokens=max(1, _env_int("CARECOMPANION_MAX_TOKENS", 2048)),
        chat_timeout_seconds=max(1.0, _env_float("CARECOMPANION_CHAT_TIMEOUT_SECONDS", 60.0)),
        allow_anon=_env_flag("ALLOW_ANON"),
        allowed_origins=tuple(origin.strip() for origin in origins if origin.strip()),
    )
