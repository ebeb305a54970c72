"""Process-lifetime cache for the stylesheet and configuration artifacts."""
from __future__ import annotations

import copy
import json
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

from css_injector.logging_utils import LOGGER_NAME

STYLESHEET = "stylesheet"
CONFIG = "config"
_KINDS = (STYLESHEET, CONFIG)
# Longest a load() call blocks by default, in seconds.
LOAD_TIMEOUT_S = 0.25

_LOGGER = logging.getLogger(LOGGER_NAME)

Dispatch = Callable[[Callable[[], None]], None]


def _direct_dispatch(callback: Callable[[], None]) -> None:
    callback()


class DirectoryAssetStore:
    """Key to bytes lookup rooted at the packaged application directory."""

    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def read(self, key: str) -> bytes:
        relative = key.lstrip("/")
        path = (self._root / relative).resolve()
        root = self._root.resolve()
        if root != path and root not in path.parents:
            raise FileNotFoundError(key)
        return path.read_bytes()


@dataclass(frozen=True)
class AssetBundle:
    stylesheet_text: Optional[str] = None
    config_object: Optional[Mapping[str, Any]] = None
    background_color: Optional[str] = None

    def config_copy(self) -> Optional[Dict[str, Any]]:
        if self.config_object is None:
            return None
        return copy.deepcopy(dict(self.config_object))


def decode_stylesheet(raw: bytes) -> Optional[str]:
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        _LOGGER.warning("Stylesheet is not valid UTF-8: %s", exc)
        return None


def decode_config(raw: bytes) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(raw.decode("utf-8-sig"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        _LOGGER.warning("Config is malformed; ignoring it (%s)", exc)
        return None
    if not isinstance(data, dict):
        _LOGGER.warning("Config is not a JSON object; ignoring it")
        return None
    return data


class AssetCache:
    """Loads both artifacts once on a worker thread and publishes a bundle.

    The worker writes, the main thread reads: every publish swaps the whole
    immutable ``AssetBundle`` under a lock. Each artifact gets one initial read
    and at most one extra read on demand; results of on-demand reads are handed
    back through ``dispatch`` (the task scheduler's ``call_soon`` in the app).
    """

    def __init__(
        self,
        store: Any,
        *,
        css_key: str,
        config_key: str,
        document_key: Optional[str] = None,
        dispatch: Optional[Dispatch] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ) -> None:
        self._store = store
        self._keys = {STYLESHEET: css_key, CONFIG: config_key}
        self._dispatch = dispatch or _direct_dispatch
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="AssetCache")
        self._lock = threading.Lock()
        self._start_lock = threading.Lock()
        self._bundle = AssetBundle()
        self._loaded = threading.Event()
        self._load_future: Optional[Future] = None
        self._refreshed: set[str] = set()
        self._document_key = document_key
        self._document: Optional[bytes] = None

    # Public API -----------------------------------------------------------

    @property
    def bundle(self) -> AssetBundle:
        with self._lock:
            return self._bundle

    @property
    def is_loaded(self) -> bool:
        return self._loaded.is_set()

    def start(self) -> Future:
        """Begin the one-time preload; later calls return the same future."""

        with self._start_lock:
            if self._load_future is None:
                self._load_future = self._executor.submit(self._load_all)
            return self._load_future

    def load(self, timeout: Optional[float] = LOAD_TIMEOUT_S) -> AssetBundle:
        """Start the preload and wait up to ``timeout`` seconds for it.

        Returns whatever is published by then. Pass ``timeout=None`` only from
        worker threads or tests.
        """

        self.start()
        if not self._loaded.wait(timeout):
            _LOGGER.debug("Asset preload still running after %ss; returning partial bundle", timeout)
        return self.bundle

    def set_background_color(self, color: str) -> bool:
        """Publish the resolved background color; only the first call wins."""

        with self._lock:
            if self._bundle.background_color is not None:
                return False
            self._bundle = replace(self._bundle, background_color=color)
        return True

    def refresh(self, kind: str) -> AssetBundle:
        """Read ``kind`` again if it is absent and has not been re-read yet.

        Off the main thread the read happens synchronously; on the main thread it
        is deferred to the worker and the current bundle is returned.
        """

        if threading.current_thread() is threading.main_thread():
            self.refresh_async(kind)
            return self.bundle
        if self._claim_refresh(kind):
            self._read_and_publish(kind)
        return self.bundle

    def refresh_async(self, kind: str, callback: Optional[Callable[[AssetBundle], None]] = None) -> bool:
        """Schedule the single on-demand read of ``kind`` on the worker.

        Returns False when no read was scheduled (already present or already
        retried); ``callback`` then never fires.
        """

        if not self._claim_refresh(kind):
            return False

        def _work() -> None:
            self._read_and_publish(kind)
            if callback is not None:
                bundle = self.bundle
                self._dispatch(lambda: callback(bundle))

        self._executor.submit(_work)
        return True

    def packaged_document(self) -> Optional[bytes]:
        """Bytes of the packaged start document, read during the preload."""

        with self._lock:
            return self._document

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)

    # Internal helpers ----------------------------------------------------

    def _claim_refresh(self, kind: str) -> bool:
        if kind not in _KINDS:
            raise ValueError(f"Unknown asset kind: {kind}")
        with self._lock:
            if self._current(kind) is not None or kind in self._refreshed:
                return False
            self._refreshed.add(kind)
            return True

    def _current(self, kind: str) -> Any:
        if kind == STYLESHEET:
            return self._bundle.stylesheet_text
        return self._bundle.config_object

    def _load_all(self) -> None:
        try:
            for kind in _KINDS:
                self._read_and_publish(kind)
            if self._document_key:
                try:
                    document = self._store.read(self._document_key)
                except OSError as exc:
                    _LOGGER.warning("Packaged document not found at %s (%s)", self._document_key, exc)
                else:
                    with self._lock:
                        self._document = document
        finally:
            self._loaded.set()
        bundle = self.bundle
        _LOGGER.debug(
            "Assets pre-loaded: stylesheet=%s config=%s",
            "absent" if bundle.stylesheet_text is None else f"{len(bundle.stylesheet_text)} chars",
            "absent" if bundle.config_object is None else f"{len(bundle.config_object)} keys",
        )

    def _read_and_publish(self, kind: str) -> None:
        key = self._keys[kind]
        try:
            raw = self._store.read(key)
        except OSError as exc:
            _LOGGER.warning("Asset %s not found at %s (%s)", kind, key, exc)
            return
        value: Any
        if kind == STYLESHEET:
            value = decode_stylesheet(raw)
        else:
            value = decode_config(raw)
        if value is None:
            return
        with self._lock:
            if kind == STYLESHEET:
                self._bundle = replace(self._bundle, stylesheet_text=value)
            else:
                self._bundle = replace(self._bundle, config_object=value)
