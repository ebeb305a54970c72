"""PyQt6 WebEngine implementation of the injector surface."""
from __future__ import annotations

import json
import logging
import mimetypes
from concurrent.futures import Executor
from pathlib import PurePosixPath
from typing import Any, Optional

from PyQt6.QtCore import QBuffer, QByteArray, QFile, QIODevice, QObject, QUrl, pyqtSignal, pyqtSlot
from PyQt6.QtWebChannel import QWebChannel
from PyQt6.QtWebEngineCore import (
    QWebEngineScript,
    QWebEngineUrlRequestJob,
    QWebEngineUrlScheme,
    QWebEngineUrlSchemeHandler,
)
from PyQt6.QtWebEngineWidgets import QWebEngineView

from css_injector.color_utils import parse_hex_color
from css_injector.command_bridge import BridgeResult, CommandBridge
from css_injector.logging_utils import LOGGER_NAME
from css_injector.surface import (
    InterceptedResponse,
    NavigationFinished,
    NavigationStarted,
    ResponseRewriter,
    SurfaceCapabilityError,
)
from css_injector.task_scheduler import TaskScheduler

APP_SCHEME = "app"
PACKAGED_PREFIX = "www"
BRIDGE_OBJECT_NAME = "CSSInjector"
_QWEBCHANNEL_RESOURCE = ":/qtwebchannel/qwebchannel.js"
_HTML_TYPES = {"text/html", "application/xhtml+xml"}

_LOGGER = logging.getLogger(LOGGER_NAME)

_BRIDGE_SHIM = (
    "(function(){"
    "if(window." + BRIDGE_OBJECT_NAME + "&&window." + BRIDGE_OBJECT_NAME + ".__bridge){return;}"
    "if(typeof QWebChannel==='undefined'||!window.qt||!qt.webChannelTransport){"
    "console.error('[Native] Bridge transport unavailable');return;}"
    "var pending={},queue=[],seq=0,target=null;"
    "function call(action,success,error){"
    "var id=String(++seq);pending[id]={s:success,e:error};"
    "if(target){target.invoke(action,id);}else{queue.push([action,id]);}"
    "}"
    "window." + BRIDGE_OBJECT_NAME + "={__bridge:true,"
    "injectCSS:function(s,e){call('injectCSS',s,e);},"
    "getConfig:function(s,e){call('getConfig',s,e);},"
    "injectBackground:function(s,e){call('injectBackground',s,e);}};"
    "new QWebChannel(qt.webChannelTransport,function(channel){"
    "target=channel.objects." + BRIDGE_OBJECT_NAME + ";"
    "target.response.connect(function(id,ok,payload){"
    "var entry=pending[id];delete pending[id];if(!entry){return;}"
    "var cb=ok?entry.s:entry.e;if(typeof cb==='function'){cb(JSON.parse(payload));}"
    "});"
    "queue.splice(0).forEach(function(item){target.invoke(item[0],item[1]);});"
    "});"
    "})();"
)


def register_app_scheme() -> None:
    """Register the packaged-content scheme; must run before QApplication exists."""

    scheme = QWebEngineUrlScheme(APP_SCHEME.encode("ascii"))
    scheme.setSyntax(QWebEngineUrlScheme.Syntax.Host)
    scheme.setFlags(
        QWebEngineUrlScheme.Flag.SecureScheme
        | QWebEngineUrlScheme.Flag.LocalAccessAllowed
        | QWebEngineUrlScheme.Flag.CorsEnabled
    )
    QWebEngineUrlScheme.registerScheme(scheme)


def _guess_mime(path: str) -> str:
    mime, _encoding = mimetypes.guess_type(path)
    return mime or "application/octet-stream"


def _is_navigation_path(path: str) -> bool:
    suffix = PurePosixPath(path).suffix
    return not suffix or _guess_mime(path) in _HTML_TYPES


class PackagedSchemeHandler(QWebEngineUrlSchemeHandler):
    """Serves ``app://`` requests from the asset store.

    Reads happen on the worker executor; the reply (and any rewrite) happens
    back on the GUI thread. Document requests go through the rewriter when one
    is installed, which also covers routes with no packaged file.
    """

    def __init__(
        self,
        store: Any,
        scheduler: TaskScheduler,
        executor: Executor,
        parent: Optional[QObject] = None,
    ) -> None:
        super().__init__(parent)
        self._store = store
        self._scheduler = scheduler
        self._executor = executor
        self._rewriter: Optional[ResponseRewriter] = None

    def set_rewriter(self, rewriter: Optional[ResponseRewriter]) -> None:
        self._rewriter = rewriter

    def requestStarted(self, job: QWebEngineUrlRequestJob) -> None:  # noqa: N802 - Qt override
        url = job.requestUrl()
        path = url.path().lstrip("/") or "index.html"
        url_text = url.toString()
        key = f"{PACKAGED_PREFIX}/{path}"

        def _read() -> None:
            try:
                body: Optional[bytes] = self._store.read(key)
            except OSError:
                body = None
            self._scheduler.call_soon(lambda: self._reply(job, url_text, path, body))

        self._executor.submit(_read)

    def _reply(self, job: QWebEngineUrlRequestJob, url_text: str, path: str, body: Optional[bytes]) -> None:
        mime = _guess_mime(path)
        response = InterceptedResponse(body, mime, "utf-8") if body is not None else None
        if self._rewriter is not None and _is_navigation_path(path):
            response = self._rewriter(url_text, response)
        try:
            if response is None:
                job.fail(QWebEngineUrlRequestJob.Error.UrlNotFound)
                return
            content_type = response.mime_type
            if response.is_html or content_type.startswith("text/"):
                content_type = f"{content_type};charset={response.encoding}"
            buffer = QBuffer(job)
            buffer.setData(QByteArray(response.body))
            buffer.open(QIODevice.OpenModeFlag.ReadOnly)
            job.reply(QByteArray(content_type.encode("ascii")), buffer)
        except RuntimeError as exc:
            _LOGGER.debug("Request for %s went away before reply: %s", url_text, exc)


class BridgeChannelObject(QObject):
    """Object published on the web channel; forwards calls to ``CommandBridge``."""

    response = pyqtSignal(str, bool, str)

    def __init__(self, bridge: CommandBridge, parent: Optional[QObject] = None) -> None:
        super().__init__(parent)
        self._bridge = bridge

    @pyqtSlot(str, str)
    def invoke(self, action: str, callback_id: str) -> None:
        def _respond(result: BridgeResult) -> None:
            self.response.emit(callback_id, result.ok, json.dumps(result.payload, ensure_ascii=False))

        if not self._bridge.execute(action, _respond):
            _respond(BridgeResult.failure(f"Unknown action: {action}"))


class WebEngineSurface:
    """Adapts a ``QWebEngineView`` to the ``Surface`` interface."""

    def __init__(
        self,
        view: QWebEngineView,
        *,
        store: Any,
        scheduler: TaskScheduler,
        executor: Executor,
        start_url: str,
    ) -> None:
        self._view = view
        self._start_url = QUrl(start_url)
        self._scheme_handler: Optional[PackagedSchemeHandler] = None
        self._channel: Optional[QWebChannel] = None
        self._bridge_object: Optional[BridgeChannelObject] = None
        if self._start_url.scheme() == APP_SCHEME:
            self._scheme_handler = PackagedSchemeHandler(store, scheduler, executor, parent=view)
            view.page().profile().installUrlSchemeHandler(APP_SCHEME.encode("ascii"), self._scheme_handler)

    @property
    def start_url(self) -> QUrl:
        return self._start_url

    def load_start_url(self) -> None:
        self._view.load(self._start_url)

    # Surface interface ---------------------------------------------------

    def is_ready(self) -> bool:
        return self._view is not None and self._view.page() is not None

    def run_script(self, script: str) -> None:
        self._view.page().runJavaScript(script)

    def set_native_background(self, color: str) -> None:
        self._view.page().setBackgroundColor(parse_hex_color(color))

    def connect_navigation(self, on_started: NavigationStarted, on_finished: NavigationFinished) -> None:
        page = self._view.page()
        page.loadStarted.connect(lambda: on_started(page.url().toString()))
        page.loadFinished.connect(lambda ok: on_finished(page.url().toString(), bool(ok)))

    def install_response_rewriter(self, rewriter: ResponseRewriter) -> None:
        if self._scheme_handler is None:
            raise SurfaceCapabilityError(
                f"{self._start_url.scheme() or 'unknown'} responses are not served by this process"
            )
        self._scheme_handler.set_rewriter(rewriter)

    def add_document_script(self, name: str, source: str) -> None:
        self._insert_script(name, source, QWebEngineScript.InjectionPoint.DocumentCreation)

    # Bridge --------------------------------------------------------------

    def expose_bridge(self, bridge: CommandBridge) -> bool:
        channel_source = _read_qt_resource(_QWEBCHANNEL_RESOURCE)
        if channel_source is None:
            _LOGGER.warning("qwebchannel.js unavailable; page bridge disabled")
            return False
        self._bridge_object = BridgeChannelObject(bridge, parent=self._view)
        self._channel = QWebChannel(self._view)
        self._channel.registerObject(BRIDGE_OBJECT_NAME, self._bridge_object)
        self._view.page().setWebChannel(self._channel)
        ready = QWebEngineScript.InjectionPoint.DocumentReady
        self._insert_script("css-injector-qwebchannel", channel_source, ready)
        self._insert_script("css-injector-bridge", _BRIDGE_SHIM, ready)
        _LOGGER.debug("Page bridge exposed as window.%s (%s)", BRIDGE_OBJECT_NAME, ", ".join(bridge.actions))
        return True

    def _insert_script(self, name: str, source: str, injection_point: QWebEngineScript.InjectionPoint) -> None:
        scripts = self._view.page().scripts()
        for existing in scripts.find(name):
            scripts.remove(existing)
        script = QWebEngineScript()
        script.setName(name)
        script.setSourceCode(source)
        script.setInjectionPoint(injection_point)
        script.setWorldId(QWebEngineScript.ScriptWorldId.MainWorld.value)
        script.setRunsOnSubFrames(False)
        scripts.insert(script)


def _read_qt_resource(path: str) -> Optional[str]:
    resource = QFile(path)
    if not resource.open(QIODevice.OpenModeFlag.ReadOnly):
        return None
    try:
        return bytes(resource.readAll().data()).decode("utf-8")
    finally:
        resource.close()
