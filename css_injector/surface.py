"""Interface between the injector and the embedded web surface hosting the page."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Protocol

NavigationStarted = Callable[[str], None]
NavigationFinished = Callable[[str, bool], None]


class SurfaceCapabilityError(RuntimeError):
    """The surface cannot provide an optional interception mechanism."""


@dataclass(frozen=True)
class InterceptedResponse:
    body: bytes
    mime_type: str = "text/html"
    encoding: str = "utf-8"

    @property
    def is_html(self) -> bool:
        return self.mime_type.split(";", 1)[0].strip().lower() in {"text/html", "application/xhtml+xml"}


ResponseRewriter = Callable[[str, Optional[InterceptedResponse]], Optional[InterceptedResponse]]


class Surface(Protocol):
    """What the injector needs from the host surface.

    Only ``is_ready``, ``run_script``, ``set_native_background`` and
    ``connect_navigation`` are mandatory. Response rewriting and document
    scripts are optional: an adapter without them raises
    ``SurfaceCapabilityError`` and the injector falls back to weaker strategies.
    All methods are called on the main sequencing thread.
    """

    def is_ready(self) -> bool: ...

    def run_script(self, script: str) -> None: ...

    def set_native_background(self, color: str) -> None: ...

    def connect_navigation(self, on_started: NavigationStarted, on_finished: NavigationFinished) -> None: ...

    def install_response_rewriter(self, rewriter: ResponseRewriter) -> None: ...

    def add_document_script(self, name: str, source: str) -> None: ...
