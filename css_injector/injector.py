"""Top-level wiring: start-up sequence and host lifecycle callbacks."""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Optional

from css_injector.asset_cache import AssetCache, DirectoryAssetStore
from css_injector.command_bridge import CommandBridge
from css_injector.context import InjectionContext, InjectionState
from css_injector.injector_config import InjectorSettings, resolve_background_color
from css_injector.lifecycle import LifecycleInterceptor
from css_injector.surface import Surface
from css_injector.task_scheduler import TaskScheduler


class AssetInjector:
    """Entry point the host talks to.

    ``initialize`` runs once when the surface is created: it fixes the
    background color, paints the native background, starts the asset preload,
    queues an early config/background injection and installs the interceptor
    (retrying while the surface is not ready). ``on_resume`` is a backstop for
    hosts whose first navigation events were missed.
    """

    def __init__(self, context: InjectionContext, interceptor: Optional[LifecycleInterceptor] = None) -> None:
        self._context = context
        self._interceptor = interceptor or LifecycleInterceptor(context)
        self._bridge = CommandBridge(self._interceptor.injector)
        self._initialized = False

    @classmethod
    def create(
        cls,
        settings: InjectorSettings,
        surface: Surface,
        scheduler: TaskScheduler,
        *,
        store: Optional[Any] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ) -> "AssetInjector":
        assets = AssetCache(
            store if store is not None else DirectoryAssetStore(settings.asset_root),
            css_key=settings.css_key,
            config_key=settings.config_key,
            document_key=settings.document_key,
            dispatch=scheduler.call_soon,
            executor=executor,
        )
        state = InjectionState(max_attempts=settings.max_injection_attempts)
        context = InjectionContext(
            settings=settings,
            assets=assets,
            surface=surface,
            scheduler=scheduler,
            state=state,
        )
        return cls(context)

    @property
    def context(self) -> InjectionContext:
        return self._context

    @property
    def interceptor(self) -> LifecycleInterceptor:
        return self._interceptor

    @property
    def bridge(self) -> CommandBridge:
        return self._bridge

    def initialize(self) -> None:
        if self._initialized:
            return
        self._initialized = True
        context = self._context
        settings = context.settings
        injector = self._interceptor.injector

        color = resolve_background_color(settings.preferences)
        context.assets.set_background_color(color)
        injector.apply_native_background(color)

        context.assets.start()
        context.scheduler.call_later(settings.early_injection_delay_ms, injector.inject_early)
        self._interceptor.install_with_retry()
        context.logger.info("Injector initialised with background %s", color)

    def when_ready(self, callback: Callable[[], None]) -> None:
        """Queue ``callback`` on the scheduler once the hooks are installed and the preload is done.

        The host loads its first page from here, so the rewriter, the
        navigation hooks and the document scripts are all in place for it.
        """

        context = self._context

        def _installed() -> None:
            context.assets.start().add_done_callback(lambda _future: context.scheduler.call_soon(callback))

        self._interceptor.when_installed(_installed)

    def on_resume(self) -> None:
        context = self._context
        if context.state.first_page_load_seen:
            return
        context.logger.debug("Resumed before any page load; scheduling backup injection")
        context.scheduler.call_later(
            context.settings.resume_delay_ms,
            lambda: self._interceptor.run_backstop("resume"),
        )

    def shutdown(self) -> None:
        self._context.assets.shutdown()
