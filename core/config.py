"""Runtime settings read from the environment."""

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_NPM_REGISTRY = "https://registry.npmjs.org"
DEFAULT_HTTP_TIMEOUT = 5.0


@dataclass
class Settings:
    """Settings shared by the CLI and library callers."""

    registry_path: Path | None = None
    history_dir: Path | None = None
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    npm_registry: str = DEFAULT_NPM_REGISTRY
    log_level: str = "WARNING"


def load_settings(environ: dict[str, str] | None = None) -> Settings:
    """Build settings from ``DEPMEND_*`` environment variables.

    Args:
        environ: Mapping to read instead of ``os.environ``

    Returns:
        Populated Settings; malformed values keep their defaults
    """
    env = os.environ if environ is None else environ

    registry_path = env.get("DEPMEND_REGISTRY_PATH")
    history_dir = env.get("DEPMEND_HISTORY_DIR")

    try:
        timeout = float(env.get("DEPMEND_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT))
        if timeout <= 0:
            timeout = DEFAULT_HTTP_TIMEOUT
    except ValueError:
        timeout = DEFAULT_HTTP_TIMEOUT

    return Settings(
        registry_path=Path(registry_path) if registry_path else None,
        history_dir=Path(history_dir) if history_dir else None,
        http_timeout=timeout,
        npm_registry=env.get("DEPMEND_NPM_REGISTRY", DEFAULT_NPM_REGISTRY).rstrip("/"),
        log_level=env.get("DEPMEND_LOG_LEVEL", "WARNING").upper(),
    )
