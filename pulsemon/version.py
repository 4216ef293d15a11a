"""Application version and the /version payload."""

from __future__ import annotations

import platform
from typing import Any

__version__ = "1.0.0"

APP_NAME = "pulsemon"


def version_payload() -> dict[str, Any]:
    """Static build/runtime metadata served by /version and --version."""
    return {
        "app": __version__,
        "runtime": f"{platform.python_implementation()} {platform.python_version()}",
        "os": platform.system().lower(),
        "arch": platform.machine(),
    }
