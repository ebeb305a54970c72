"""Release identifier and build flavour for css-injector."""
from __future__ import annotations

import os
import re
from typing import Any, Optional

__all__ = ["__version__", "DEV_MODE_ENV_VAR", "parse_flag", "dev_mode_override", "is_dev_build", "build_label"]

__version__ = "0.4.1"
DEV_MODE_ENV_VAR = "CSS_INJECTOR_DEV_MODE"

_TRUE_TOKENS = frozenset({"1", "true", "yes", "on"})
_FALSE_TOKENS = frozenset({"0", "false", "no", "off"})
# "-dev", ".dev3", "+dev" style markers in a version string.
_DEV_MARKER = re.compile(r"(?:^|[.+-])dev\d*(?:$|[.+-])")


def parse_flag(value: Any) -> Optional[bool]:
    """Read an on/off value from JSON or the environment.

    Accepts real booleans, the integers 0 and 1, and the usual string tokens.
    Anything else gives None so callers can keep their own default.
    """

    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return {0: False, 1: True}.get(value)
    if not isinstance(value, str):
        return None
    token = value.strip().lower()
    if token in _TRUE_TOKENS:
        return True
    if token in _FALSE_TOKENS:
        return False
    return None


def dev_mode_override() -> Optional[bool]:
    return parse_flag(os.getenv(DEV_MODE_ENV_VAR))


def is_dev_build(version: Optional[str] = None) -> bool:
    """True when the build should log at DEBUG by default; the env var wins."""

    override = dev_mode_override()
    if override is not None:
        return override
    identifier = (version or __version__).strip().lower()
    return bool(_DEV_MARKER.search(identifier))


def build_label(version: Optional[str] = None) -> str:
    identifier = version or __version__
    flavour = "dev" if is_dev_build(identifier) else "release"
    return f"{identifier} ({flavour})"
