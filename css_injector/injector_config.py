"""Settings for the injector, read from ``injector_settings.json``."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from css_injector.color_utils import coerce_color, is_valid_hex_color
from css_injector.logging_utils import LOGGER_NAME
from version import parse_flag

SETTINGS_FILE_NAME = "injector_settings.json"
SETTINGS_ENV_VAR = "CSS_INJECTOR_SETTINGS"

CSS_ASSET_KEY = "www/assets/cdn-styles.css"
CONFIG_ASSET_KEY = "www/cordova-build-config.json"
DOCUMENT_ASSET_KEY = "www/index.html"
DEFAULT_START_URL = "app://local/index.html"

BACKGROUND_COLOR_KEYS: Tuple[str, ...] = (
    "WEBVIEW_BACKGROUND_COLOR",
    "BackgroundColor",
    "SplashScreenBackgroundColor",
)

_LOGGER = logging.getLogger(LOGGER_NAME)


@dataclass
class InjectorSettings:
    """Values used to bootstrap the injector and its host window."""

    asset_root: Path = field(default_factory=Path.cwd)
    css_key: str = CSS_ASSET_KEY
    config_key: str = CONFIG_ASSET_KEY
    document_key: str = DOCUMENT_ASSET_KEY
    start_url: str = DEFAULT_START_URL
    preferences: Dict[str, str] = field(default_factory=dict)
    max_injection_attempts: int = 3
    injection_backoff_ms: int = 300
    settle_delay_ms: int = 500
    install_attempts: int = 10
    install_backoff_ms: int = 100
    early_injection_delay_ms: int = 50
    navigation_fallback_delay_ms: int = 50
    stylesheet_delay_ms: int = 50
    resume_delay_ms: int = 200
    reset_attempts_per_navigation: bool = True
    log_retention: int = 5


def resolve_settings_path(cli_value: Optional[str], base_dir: Path) -> Path:
    if cli_value:
        return Path(cli_value).expanduser().resolve()
    env_override = os.getenv(SETTINGS_ENV_VAR)
    if env_override:
        return Path(env_override).expanduser().resolve()
    return (base_dir / SETTINGS_FILE_NAME).resolve()


def resolve_background_color(
    preferences: Mapping[str, Any],
    *,
    last_known_good: Optional[str] = None,
) -> str:
    """Pick the background color from the first non-empty preference key.

    An invalid value falls back to ``last_known_good`` and then to white.
    """

    fallback = coerce_color(last_known_good)
    for key in BACKGROUND_COLOR_KEYS:
        raw = preferences.get(key)
        if raw is None:
            continue
        value = str(raw).strip()
        if not value:
            continue
        if is_valid_hex_color(value):
            return value
        _LOGGER.warning("Ignoring invalid background color %r from %s; using %s", value, key, fallback)
        return fallback
    return fallback


def _int(data: Mapping[str, Any], key: str, fallback: int, *, minimum: int = 0, maximum: int = 60_000) -> int:
    try:
        numeric = int(data.get(key, fallback))
    except (TypeError, ValueError):
        return fallback
    return max(minimum, min(numeric, maximum))


def _bool(data: Mapping[str, Any], key: str, fallback: bool) -> bool:
    parsed = parse_flag(data.get(key))
    return fallback if parsed is None else parsed


def _str(data: Mapping[str, Any], key: str, fallback: str) -> str:
    value = data.get(key)
    if value is None:
        return fallback
    text = str(value).strip()
    return text or fallback


def load_injector_settings(settings_path: Path) -> InjectorSettings:
    """Read settings from JSON, keeping defaults for anything missing or invalid."""

    defaults = InjectorSettings(asset_root=settings_path.parent)
    try:
        raw = settings_path.read_text(encoding="utf-8")
    except (FileNotFoundError, OSError):
        _LOGGER.debug("Settings not found at %s; using defaults", settings_path)
        return defaults

    try:
        data: Dict[str, Any] = json.loads(raw)
    except json.JSONDecodeError as exc:
        _LOGGER.warning("Failed to parse %s; using defaults (%s)", settings_path, exc)
        return defaults
    if not isinstance(data, dict):
        _LOGGER.warning("Settings at %s are not a JSON object; using defaults", settings_path)
        return defaults

    root_value = data.get("asset_root")
    asset_root = defaults.asset_root
    if isinstance(root_value, str) and root_value.strip():
        candidate = Path(root_value.strip()).expanduser()
        asset_root = candidate if candidate.is_absolute() else (settings_path.parent / candidate)

    preferences: Dict[str, str] = {}
    raw_prefs = data.get("preferences")
    if isinstance(raw_prefs, dict):
        for name, value in raw_prefs.items():
            if value is None:
                continue
            preferences[str(name)] = str(value)

    retry = data.get("retry")
    retry_data: Mapping[str, Any] = retry if isinstance(retry, dict) else {}

    return InjectorSettings(
        asset_root=asset_root,
        css_key=_str(data, "css_path", defaults.css_key),
        config_key=_str(data, "config_path", defaults.config_key),
        document_key=_str(data, "document_path", defaults.document_key),
        start_url=_str(data, "start_url", defaults.start_url),
        preferences=preferences,
        max_injection_attempts=_int(retry_data, "max_attempts", defaults.max_injection_attempts, minimum=1, maximum=50),
        injection_backoff_ms=_int(retry_data, "base_delay_ms", defaults.injection_backoff_ms),
        settle_delay_ms=_int(retry_data, "settle_delay_ms", defaults.settle_delay_ms),
        install_attempts=_int(retry_data, "install_attempts", defaults.install_attempts, minimum=1, maximum=100),
        install_backoff_ms=_int(retry_data, "install_base_delay_ms", defaults.install_backoff_ms),
        early_injection_delay_ms=_int(data, "early_injection_delay_ms", defaults.early_injection_delay_ms),
        navigation_fallback_delay_ms=_int(data, "navigation_fallback_delay_ms", defaults.navigation_fallback_delay_ms),
        stylesheet_delay_ms=_int(data, "stylesheet_delay_ms", defaults.stylesheet_delay_ms),
        resume_delay_ms=_int(data, "resume_delay_ms", defaults.resume_delay_ms),
        reset_attempts_per_navigation=_bool(
            data, "reset_attempts_per_navigation", defaults.reset_attempts_per_navigation
        ),
        log_retention=_int(data, "log_retention", defaults.log_retention, minimum=1, maximum=20),
    )
