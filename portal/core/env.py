from __future__ import annotations

import os
from pathlib import Path


def load_env(path: Path | None = None) -> None:
    """
    Load KEY=value pairs from the project's .env files into os.environ.

    `.env` is read first and never overrides variables that are already set.
    `.env.local` (only when no explicit path is given) may override values
    coming from `.env`, but never the variables exported by the shell.
    """
    shell_keys = set(os.environ.keys())

    env_path = path or _project_env_path()
    if env_path.exists():
        _apply_env_file(env_path, override=False, protected=shell_keys)

    if path is None:
        local_path = env_path.with_name(".env.local")
        if local_path.exists():
            _apply_env_file(local_path, override=True, protected=shell_keys)


def _apply_env_file(env_path: Path, *, override: bool, protected: set[str]) -> None:
    for raw_line in env_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        key, value = line.split("=", 1)
        key = key.strip()
        if not key or key in protected:
            continue
        if not override and key in os.environ:
            continue
        os.environ[key] = _unquote(value.strip())


def _project_env_path() -> Path:
    return Path(__file__).resolve().parents[2] / ".env"


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
        return value[1:-1]
    return value


__all__ = ["load_env"]
