from __future__ import annotations

import base64
import heapq
import json
from concurrent.futures import Future
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from css_injector.injector import AssetInjector
from css_injector.injector_config import CONFIG_ASSET_KEY, CSS_ASSET_KEY, DOCUMENT_ASSET_KEY, InjectorSettings
from css_injector.payload_builders import BACKGROUND_ELEMENT_ID, CONFIG_GLOBALS, STYLESHEET_ELEMENT_ID
from css_injector.surface import SurfaceCapabilityError

DEFAULT_CSS = "body{color:#222}\n.card::after{content:'✓'}"
DEFAULT_CONFIG = {"apiBase": "https://api.example.test", "theme": {"accent": "#00AA00"}, "flags": [1, 2]}
DEFAULT_DOCUMENT = "<!doctype html><html><head><title>app</title></head><body><div id=\"root\"></div></body></html>"

_JS_SIMPLE_ESCAPES = {"n": "\n", "r": "\r", "t": "\t", "\\": "\\", "'": "'", '"': '"', "/": "/"}


def js_unescape(text: str) -> str:
    out: List[str] = []
    index = 0
    while index < len(text):
        char = text[index]
        if char != "\\":
            out.append(char)
            index += 1
            continue
        marker = text[index + 1]
        if marker == "u":
            out.append(chr(int(text[index + 2 : index + 6], 16)))
            index += 6
            continue
        out.append(_JS_SIMPLE_ESCAPES.get(marker, marker))
        index += 2
    return "".join(out)


def read_js_literal(script: str, marker: str) -> str:
    """Unescaped string literal opened by the quote that ends ``marker``."""

    start = script.index(marker) + len(marker)
    quote = marker[-1]
    index = start
    while script[index] != quote:
        index += 2 if script[index] == "\\" else 1
    return js_unescape(script[start:index])


class FakePage:
    """Just enough of a document to evaluate the injected fragments."""

    def __init__(self, *, loading: bool = False, has_head: bool = True) -> None:
        self.ready_state = "loading" if loading else "complete"
        self.has_head = has_head
        self.globals: Dict[str, Any] = {}
        self.elements: Dict[str, str] = {}
        self.head_order: List[str] = []
        self.inline_background: Optional[str] = None
        self.ready_flag = False
        self.ready_events: List[Any] = []
        self._dom_ready: List[Callable[[], None]] = []

    def evaluate(self, script: str) -> None:
        if 'JSON.parse("' in script:
            self._run_config(script)
        elif f"s.id='{BACKGROUND_ELEMENT_ID}'" in script:
            self._run_background(script)
        elif f"s.id='{STYLESHEET_ELEMENT_ID}'" in script:
            self._run_stylesheet(script)

    def finish_loading(self) -> None:
        if self.ready_state != "loading":
            return
        self.ready_state = "complete"
        listeners, self._dom_ready = self._dom_ready, []
        for listener in listeners:
            listener()

    def _when_ready(self, callback: Callable[[], None]) -> None:
        callback()
        if self.ready_state == "loading":
            self._dom_ready.append(callback)

    def _run_config(self, script: str) -> None:
        config = json.loads(read_js_literal(script, 'JSON.parse("'))
        for name in CONFIG_GLOBALS:
            self.globals[name] = config

        def _ready() -> None:
            if self.ready_flag:
                return
            self.ready_flag = True
            self.ready_events.append(config)

        if self.ready_state == "loading":
            self._dom_ready.append(_ready)
        else:
            _ready()

    def _run_stylesheet(self, script: str) -> None:
        if "atob('" in script:
            css = base64.b64decode(read_js_literal(script, "atob('")).decode("utf-8")
        else:
            css = read_js_literal(script, "s.textContent='")

        def _inject() -> None:
            if not self.has_head or STYLESHEET_ELEMENT_ID in self.elements:
                return
            self.elements[STYLESHEET_ELEMENT_ID] = css
            self.head_order.append(STYLESHEET_ELEMENT_ID)

        self._when_ready(_inject)

    def _run_background(self, script: str) -> None:
        color = read_js_literal(script, "var c='")
        css = read_js_literal(script, "var css='")

        def _apply() -> None:
            self.inline_background = color
            if not self.has_head:
                return
            if BACKGROUND_ELEMENT_ID not in self.elements:
                self.head_order.insert(0, BACKGROUND_ELEMENT_ID)
            self.elements[BACKGROUND_ELEMENT_ID] = css

        self._when_ready(_apply)


class FakeSurface:
    def __init__(self, *, ready: bool = True, rewrite: bool = True, document_scripts: bool = True) -> None:
        self.ready = ready
        self.supports_rewrite = rewrite
        self.supports_document_scripts = document_scripts
        self.fail_scripts = False
        self.page = FakePage()
        self.scripts: List[str] = []
        self.native_backgrounds: List[str] = []
        self.document_scripts: Dict[str, str] = {}
        self.rewriter = None
        self.on_started: Optional[Callable[[str], None]] = None
        self.on_finished: Optional[Callable[[str, bool], None]] = None

    def is_ready(self) -> bool:
        return self.ready

    def run_script(self, script: str) -> None:
        if self.fail_scripts:
            raise RuntimeError("page gone")
        self.scripts.append(script)
        self.page.evaluate(script)

    def set_native_background(self, color: str) -> None:
        self.native_backgrounds.append(color)

    def connect_navigation(self, on_started, on_finished) -> None:
        self.on_started = on_started
        self.on_finished = on_finished

    def install_response_rewriter(self, rewriter) -> None:
        if not self.supports_rewrite:
            raise SurfaceCapabilityError("no response hook")
        self.rewriter = rewriter

    def add_document_script(self, name: str, source: str) -> None:
        if not self.supports_document_scripts:
            raise SurfaceCapabilityError("no document scripts")
        self.document_scripts[name] = source

    def start_navigation(self, url: str = "app://local/index.html", *, has_head: bool = True) -> FakePage:
        self.page = FakePage(loading=True, has_head=has_head)
        if self.on_started is not None:
            self.on_started(url)
        for source in self.document_scripts.values():
            self.page.evaluate(source)
        return self.page

    def finish_navigation(self, url: str = "app://local/index.html", ok: bool = True) -> None:
        self.page.finish_loading()
        if self.on_finished is not None:
            self.on_finished(url, ok)


class ManualScheduler:
    """Virtual clock; nothing runs until ``advance``."""

    def __init__(self) -> None:
        self.now = 0
        self._queue: List[Tuple[int, int, Callable[[], None]]] = []
        self._seq = 0

    def call_soon(self, callback: Callable[[], None]) -> None:
        self.call_later(0, callback)

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> None:
        self._seq += 1
        heapq.heappush(self._queue, (self.now + max(0, int(delay_ms)), self._seq, callback))

    @property
    def pending(self) -> int:
        return len(self._queue)

    def advance(self, delay_ms: int = 0) -> None:
        target = self.now + delay_ms
        while self._queue and self._queue[0][0] <= target:
            due, _seq, callback = heapq.heappop(self._queue)
            self.now = due
            callback()
        self.now = target

    def run_until_idle(self, limit_ms: int = 60_000) -> None:
        self.advance(limit_ms)


class InlineExecutor:
    def __init__(self) -> None:
        self.submitted = 0
        self.shut_down = False

    def submit(self, fn, *args, **kwargs) -> Future:
        self.submitted += 1
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:  # pragma: no cover - surfaced through the future
            future.set_exception(exc)
        return future

    def shutdown(self, wait: bool = True) -> None:
        self.shut_down = True


class DeferredExecutor:
    """Holds submitted work until ``run_pending``, like a busy worker thread."""

    def __init__(self) -> None:
        self._pending: List[Tuple[Future, Callable[[], Any]]] = []
        self.shut_down = False

    def submit(self, fn, *args, **kwargs) -> Future:
        future: Future = Future()
        self._pending.append((future, lambda: fn(*args, **kwargs)))
        return future

    @property
    def pending(self) -> int:
        return len(self._pending)

    def run_pending(self) -> None:
        while self._pending:
            future, work = self._pending.pop(0)
            try:
                future.set_result(work())
            except Exception as exc:  # pragma: no cover - surfaced through the future
                future.set_exception(exc)

    def shutdown(self, wait: bool = True) -> None:
        self.shut_down = True


class MemoryStore:
    def __init__(self, files: Optional[Dict[str, bytes]] = None) -> None:
        self.files: Dict[str, bytes] = dict(files or {})
        self.reads: List[str] = []

    def read(self, key: str) -> bytes:
        self.reads.append(key)
        try:
            return self.files[key]
        except KeyError:
            raise FileNotFoundError(key) from None

    def read_count(self, key: str) -> int:
        return self.reads.count(key)


def default_files() -> Dict[str, bytes]:
    return {
        CSS_ASSET_KEY: DEFAULT_CSS.encode("utf-8"),
        CONFIG_ASSET_KEY: json.dumps(DEFAULT_CONFIG).encode("utf-8"),
        DOCUMENT_ASSET_KEY: DEFAULT_DOCUMENT.encode("utf-8"),
    }


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def inline_executor() -> InlineExecutor:
    return InlineExecutor()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore(default_files())


@pytest.fixture
def surface() -> FakeSurface:
    return FakeSurface()


@pytest.fixture
def page() -> FakePage:
    return FakePage()


@pytest.fixture
def settings(tmp_path: Path) -> InjectorSettings:
    return InjectorSettings(asset_root=tmp_path, preferences={"BackgroundColor": "#102030"})


@pytest.fixture
def make_injector(settings, surface, scheduler, store, inline_executor):
    def _make(**overrides: Any) -> AssetInjector:
        values = dict(settings=settings, surface=surface, scheduler=scheduler, store=store, executor=inline_executor)
        values.update(overrides)
        return AssetInjector.create(
            values["settings"],
            values["surface"],
            values["scheduler"],
            store=values["store"],
            executor=values["executor"],
        )

    return _make
