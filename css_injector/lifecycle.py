"""Navigation lifecycle hooks and the injection strategy chain.

Strategies, strongest first:

1. ``response-rewrite``: splice the fragments into the HTML before any page
   script runs (only where the surface can rewrite navigation responses).
2. ``document-script``: register fragments to run at document creation.
3. ``navigation-script``: push fragments on navigation start and finish.
4. ``retry-polling``: re-apply everything on a bounded backoff schedule.

The weaker strategies always run; they are idempotent and cover surfaces
where the stronger ones are missing or silently did not apply.
"""
from __future__ import annotations

import enum
from typing import Callable, List, Optional, Set, Tuple

from css_injector.context import InjectionContext
from css_injector.injection import PageInjector
from css_injector.retry_scheduler import RetryPolicy, RetryScheduler, RetryState
from css_injector.surface import InterceptedResponse, SurfaceCapabilityError
from css_injector.task_scheduler import run_task

STRATEGY_RESPONSE_REWRITE = "response-rewrite"
STRATEGY_DOCUMENT_SCRIPT = "document-script"
STRATEGY_NAVIGATION_SCRIPT = "navigation-script"
STRATEGY_RETRY_POLLING = "retry-polling"
STRATEGY_CHAIN: Tuple[str, ...] = (
    STRATEGY_RESPONSE_REWRITE,
    STRATEGY_DOCUMENT_SCRIPT,
    STRATEGY_NAVIGATION_SCRIPT,
    STRATEGY_RETRY_POLLING,
)

DOCUMENT_SCRIPT_PREFIX = "css-injector-"


class InterceptorPhase(enum.Enum):
    UNINITIALIZED = "uninitialized"
    INSTALLED = "installed"
    ACTIVE = "active"


class LifecycleInterceptor:
    """Owns the surface hooks and decides which strategies are in play."""

    def __init__(self, context: InjectionContext, injector: Optional[PageInjector] = None) -> None:
        self._context = context
        self._injector = injector or PageInjector(context)
        settings = context.settings
        self._retry = RetryScheduler(
            "Injection",
            RetryPolicy(
                max_attempts=settings.max_injection_attempts,
                base_delay_ms=settings.injection_backoff_ms,
                settle_delay_ms=settings.settle_delay_ms,
            ),
            context.scheduler,
            self._burst,
            state=context.state,
        )
        self._installer = RetryScheduler(
            "Interceptor install",
            RetryPolicy(
                max_attempts=settings.install_attempts,
                base_delay_ms=settings.install_backoff_ms,
                initial_delay_ms=settings.install_backoff_ms,
                settle_delay_ms=0,
            ),
            context.scheduler,
            self.install,
            state=RetryState(),
        )
        self._phase = InterceptorPhase.UNINITIALIZED
        self._strategies: Set[str] = set()
        self._installed_callbacks: List[Callable[[], None]] = []
        self._rewrites = 0

    # Properties -----------------------------------------------------------

    @property
    def phase(self) -> InterceptorPhase:
        return self._phase

    @property
    def active_strategies(self) -> Tuple[str, ...]:
        return tuple(name for name in STRATEGY_CHAIN if name in self._strategies)

    @property
    def retry(self) -> RetryScheduler:
        return self._retry

    @property
    def installer(self) -> RetryScheduler:
        return self._installer

    @property
    def injector(self) -> PageInjector:
        return self._injector

    @property
    def rewrite_count(self) -> int:
        return self._rewrites

    # Installation ---------------------------------------------------------

    def install_with_retry(self) -> bool:
        """Keep trying ``install`` while the surface is not ready yet."""

        return self._installer.start("surface hooks")

    def when_installed(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` once the hooks are in place (now, if they already are)."""

        if self._phase is InterceptorPhase.UNINITIALIZED:
            self._installed_callbacks.append(callback)
            return
        run_task(callback)

    def install(self) -> bool:
        """Connect the surface hooks.

        Does not wait for the asset preload: the rewriter reads the bundle when
        a response arrives, and document scripts follow once the preload is
        done.
        """

        if self._phase is not InterceptorPhase.UNINITIALIZED:
            return True
        logger = self._context.logger
        surface = self._context.surface
        if not surface.is_ready():
            logger.debug("Surface not ready; interceptor install deferred")
            return False

        try:
            surface.install_response_rewriter(self.rewrite_response)
        except SurfaceCapabilityError as exc:
            logger.info("Response rewriting unavailable (%s); relying on script injection", exc)
        else:
            self._strategies.add(STRATEGY_RESPONSE_REWRITE)

        surface.connect_navigation(self.on_navigation_started, self.on_navigation_finished)
        self._strategies.update((STRATEGY_NAVIGATION_SCRIPT, STRATEGY_RETRY_POLLING))
        self._phase = InterceptorPhase.INSTALLED
        self._schedule_document_scripts()
        logger.info("Interceptor installed; strategies: %s", ", ".join(self.active_strategies))

        callbacks, self._installed_callbacks = self._installed_callbacks, []
        for callback in callbacks:
            run_task(callback)
        return True

    def _schedule_document_scripts(self) -> None:
        assets = self._context.assets
        if assets.is_loaded:
            self._add_document_scripts()
            return
        self._context.logger.debug("Assets still loading; document scripts follow the preload")
        scheduler = self._context.scheduler
        assets.start().add_done_callback(lambda _future: scheduler.call_soon(self._add_document_scripts))

    def _add_document_scripts(self) -> None:
        if STRATEGY_DOCUMENT_SCRIPT in self._strategies:
            return
        if self._install_document_scripts():
            self._strategies.add(STRATEGY_DOCUMENT_SCRIPT)

    def _install_document_scripts(self) -> bool:
        logger = self._context.logger
        bundle = self._context.assets.bundle
        builder = self._context.builder
        payloads = [
            builder.build_config_payload(bundle),
            builder.build_background_payload(bundle.background_color),
            builder.build_stylesheet_payload(bundle),
        ]
        installed = 0
        for payload in payloads:
            if payload is None:
                continue
            try:
                self._context.surface.add_document_script(DOCUMENT_SCRIPT_PREFIX + payload.kind, payload.script)
            except SurfaceCapabilityError as exc:
                logger.info("Document scripts unavailable (%s); relying on navigation hooks", exc)
                return False
            installed += 1
        if installed == 0:
            logger.debug("No artifacts ready for document scripts")
            return False
        logger.debug("Installed %d document script(s)", installed)
        return True

    # Response rewriting ---------------------------------------------------

    def rewrite_response(
        self,
        url: str,
        original: Optional[InterceptedResponse],
    ) -> Optional[InterceptedResponse]:
        """Return the document with the head markup spliced in.

        A missing or empty original falls back to the packaged document.
        Non-HTML responses and documents without a head tag come back as they
        were; None only when there is no document at all.
        """

        logger = self._context.logger
        response = original if original is not None and original.body else self._packaged_document()
        if response is None:
            logger.warning("No document available for %s", url)
            return original
        if not response.is_html:
            return response
        try:
            text = response.body.decode(response.encoding or "utf-8")
        except (LookupError, UnicodeDecodeError) as exc:
            logger.warning("Cannot decode %s as %s; serving it unmodified (%s)", url, response.encoding, exc)
            return response

        bundle = self._context.assets.bundle
        spliced = self._context.builder.splice_head(text, self._context.builder.head_markup(bundle))
        if spliced is None:
            logger.debug("Response for %s left unmodified (no head marker or nothing to inject)", url)
            return response
        try:
            body = spliced.encode(response.encoding or "utf-8")
        except (LookupError, UnicodeEncodeError) as exc:
            logger.warning("Cannot re-encode %s; serving it unmodified (%s)", url, exc)
            return response
        self._rewrites += 1
        logger.debug("Injected head markup into %s (%d -> %d bytes)", url, len(response.body), len(body))
        return InterceptedResponse(body=body, mime_type=response.mime_type, encoding=response.encoding)

    def _packaged_document(self) -> Optional[InterceptedResponse]:
        body = self._context.assets.packaged_document()
        if body is None:
            return None
        return InterceptedResponse(body=body, mime_type="text/html", encoding="utf-8")

    # Navigation -----------------------------------------------------------

    def on_navigation_started(self, url: str) -> None:
        context = self._context
        if self._phase is InterceptorPhase.INSTALLED:
            self._phase = InterceptorPhase.ACTIVE
            context.logger.debug("Interceptor active")
        context.logger.debug("Navigation started: %s", url)
        if context.settings.reset_attempts_per_navigation:
            self._retry.reset()
        self._injector.apply_native_background()
        context.scheduler.call_later(context.settings.navigation_fallback_delay_ms, self._injector.inject_early)

    def on_navigation_finished(self, url: str, ok: bool = True) -> None:
        context = self._context
        if context.state.mark_first_page_load():
            context.logger.debug("First page load seen")
        context.logger.debug("Navigation finished: %s (ok=%s)", url, ok)
        self._retry.start("navigation finished")

    def run_backstop(self, reason: str) -> bool:
        return self._retry.start(reason)

    def _burst(self) -> bool:
        self._injector.inject_all()
        return False
