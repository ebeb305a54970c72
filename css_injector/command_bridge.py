"""Page-callable commands: ``injectCSS``, ``getConfig`` and ``injectBackground``."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict

from css_injector.asset_cache import CONFIG
from css_injector.injection import PageInjector

ACTION_INJECT_CSS = "injectCSS"
ACTION_GET_CONFIG = "getConfig"
ACTION_INJECT_BACKGROUND = "injectBackground"

MSG_CSS_INJECTED = "CSS injected"
MSG_BACKGROUND_INJECTED = "Background injected"
ERR_CONFIG_UNAVAILABLE = "Config not available"
ERR_NO_BACKGROUND = "No background color"


@dataclass(frozen=True)
class BridgeResult:
    ok: bool
    payload: Any

    @classmethod
    def success(cls, payload: Any) -> "BridgeResult":
        return cls(True, payload)

    @classmethod
    def failure(cls, reason: str) -> "BridgeResult":
        return cls(False, reason)


Respond = Callable[[BridgeResult], None]


class CommandBridge:
    """Dispatches named actions to the injection primitives.

    Callers get a result through ``respond``; the injection itself always runs
    later on the scheduler's thread.
    """

    def __init__(self, injector: PageInjector) -> None:
        self._injector = injector
        self._context = injector.context
        self._actions: Dict[str, Callable[[Respond], None]] = {
            ACTION_INJECT_CSS: self.inject_css,
            ACTION_GET_CONFIG: self.get_config,
            ACTION_INJECT_BACKGROUND: self.inject_background,
        }

    @property
    def actions(self) -> tuple[str, ...]:
        return tuple(self._actions)

    def execute(self, action: str, respond: Respond) -> bool:
        """Run ``action``; False means the action name is not handled here."""

        handler = self._actions.get(action)
        if handler is None:
            self._context.logger.debug("Unknown bridge action %r", action)
            return False
        handler(respond)
        return True

    def inject_css(self, respond: Respond) -> None:
        self._context.scheduler.call_soon(self._injector.inject_stylesheet)
        respond(BridgeResult.success(MSG_CSS_INJECTED))

    def get_config(self, respond: Respond) -> None:
        builder = self._context.builder
        config = builder.merged_config(self._context.assets.bundle)
        if config is not None:
            respond(BridgeResult.success(config))
            return

        def _after_reload(bundle) -> None:
            reloaded = builder.merged_config(bundle)
            if reloaded is None:
                respond(BridgeResult.failure(ERR_CONFIG_UNAVAILABLE))
            else:
                respond(BridgeResult.success(reloaded))

        if not self._context.assets.refresh_async(CONFIG, _after_reload):
            respond(BridgeResult.failure(ERR_CONFIG_UNAVAILABLE))

    def inject_background(self, respond: Respond) -> None:
        color = self._context.assets.bundle.background_color
        if not color:
            respond(BridgeResult.failure(ERR_NO_BACKGROUND))
            return
        self._context.scheduler.call_soon(lambda: self._injector.inject_background(color))
        respond(BridgeResult.success(MSG_BACKGROUND_INJECTED))
