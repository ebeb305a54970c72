"""Injection primitives shared by the lifecycle hooks, retries and the bridge."""
from __future__ import annotations

from typing import Callable, Optional

from css_injector.asset_cache import CONFIG, STYLESHEET
from css_injector.color_utils import InvalidColorError
from css_injector.context import InjectionContext
from css_injector.payload_builders import InjectionPayload


class PageInjector:
    """Pushes fragments into the surface; each call is a full, idempotent re-application."""

    def __init__(self, context: InjectionContext) -> None:
        self._context = context

    @property
    def context(self) -> InjectionContext:
        return self._context

    # Public API -----------------------------------------------------------

    def inject_config(self) -> bool:
        bundle = self._context.assets.bundle
        payload = self._context.builder.build_config_payload(bundle)
        if payload is None:
            self._request_reload(CONFIG, self.inject_config)
            return False
        return self._run(payload)

    def inject_background(self, color: Optional[str] = None) -> bool:
        color = color or self._context.assets.bundle.background_color
        payload = self._context.builder.build_background_payload(color)
        if payload is None:
            self._context.logger.debug("Background fragment skipped: no usable color (%r)", color)
            return False
        return self._run(payload)

    def inject_stylesheet(self) -> bool:
        bundle = self._context.assets.bundle
        payload = self._context.builder.build_stylesheet_payload(bundle)
        if payload is None:
            self._request_reload(STYLESHEET, self.inject_stylesheet)
            return False
        return self._run(payload)

    def inject_early(self) -> None:
        """Config plus background CSS; used before the page is known to be ready."""

        self.inject_background()
        self.inject_config()

    def inject_all(self) -> None:
        """One burst: config and background now, the stylesheet shortly after."""

        self.inject_config()
        self.inject_background()
        self._context.scheduler.call_later(self._context.settings.stylesheet_delay_ms, self.inject_stylesheet)

    def apply_native_background(self, color: Optional[str] = None) -> bool:
        color = color or self._context.assets.bundle.background_color
        if not color:
            return False
        surface = self._context.surface
        if not surface.is_ready():
            return False
        try:
            surface.set_native_background(color)
        except (InvalidColorError, RuntimeError) as exc:
            self._context.logger.warning("Native background %s not applied: %s", color, exc)
            return False
        self._context.logger.debug("Native background set: %s", color)
        return True

    # Internal helpers ----------------------------------------------------

    def _run(self, payload: InjectionPayload) -> bool:
        surface = self._context.surface
        if not surface.is_ready():
            self._context.logger.debug("Surface not ready; %s fragment deferred", payload.kind)
            return False
        try:
            surface.run_script(payload.script)
        except RuntimeError as exc:
            self._context.logger.warning("Failed to run %s fragment: %s", payload.kind, exc)
            return False
        self._context.logger.debug(
            "Injected %s fragment (%d chars%s)",
            payload.kind,
            payload.size,
            ", text fallback" if payload.fallback else "",
        )
        return True

    def _request_reload(self, kind: str, retry: Callable[[], bool]) -> None:
        assets = self._context.assets
        if not assets.is_loaded:
            self._context.logger.debug("%s not loaded yet; skipping this injection", kind)
            return
        scheduled = assets.refresh_async(kind, lambda _bundle: retry())
        if scheduled:
            self._context.logger.debug("%s absent; scheduled one on-demand reload", kind)
        else:
            self._context.logger.debug("%s unavailable; injection skipped", kind)
