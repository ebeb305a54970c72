from __future__ import annotations

import argparse
import os
import sys
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from pathlib import Path
from typing import Optional

from PyQt6.QtCore import Qt
from PyQt6.QtWidgets import QApplication
from PyQt6.QtWebEngineWidgets import QWebEngineView

from css_injector.asset_cache import DirectoryAssetStore
from css_injector.injector import AssetInjector
from css_injector.injector_config import InjectorSettings, load_injector_settings, resolve_settings_path
from css_injector.logging_utils import configure_logging, resolve_log_level_hint
from css_injector.qt_surface import WebEngineSurface, register_app_scheme
from css_injector.task_scheduler import QtTaskScheduler
from version import build_label

PROJECT_DIR = Path(__file__).resolve().parent.parent
WINDOW_SIZE = (1024, 768)


def _apply_overrides(settings: InjectorSettings, args: argparse.Namespace) -> InjectorSettings:
    if args.asset_root:
        settings = replace(settings, asset_root=Path(args.asset_root).expanduser().resolve())
    if args.url:
        settings = replace(settings, start_url=args.url)
    return settings


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Web surface host with stylesheet and config injection")
    parser.add_argument("--settings", help="Path to injector_settings.json")
    parser.add_argument("--asset-root", help="Directory holding the packaged www/ tree")
    parser.add_argument("--url", help="Start URL (defaults to the packaged index page)")
    args = parser.parse_args(argv)

    settings_path = resolve_settings_path(args.settings, PROJECT_DIR)
    settings = _apply_overrides(load_injector_settings(settings_path), args)
    logger = configure_logging(
        settings.asset_root,
        retention=settings.log_retention,
        level_hint=resolve_log_level_hint(),
    )
    logger.info("Starting css-injector %s (pid=%s)", build_label(), os.getpid())
    logger.debug(
        "Loaded settings from %s: asset_root=%s start_url=%s attempts=%d backoff=%dms",
        settings_path,
        settings.asset_root,
        settings.start_url,
        settings.max_injection_attempts,
        settings.injection_backoff_ms,
    )

    register_app_scheme()
    app = QApplication(sys.argv)
    view = QWebEngineView()
    view.setWindowTitle("css-injector")
    view.resize(*WINDOW_SIZE)

    scheduler = QtTaskScheduler()
    store = DirectoryAssetStore(settings.asset_root)
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="AssetCache")
    surface = WebEngineSurface(
        view,
        store=store,
        scheduler=scheduler,
        executor=executor,
        start_url=settings.start_url,
    )
    injector = AssetInjector.create(settings, surface, scheduler, store=store, executor=executor)
    surface.expose_bridge(injector.bridge)
    injector.initialize()
    injector.when_ready(surface.load_start_url)

    def _state_changed(state: Qt.ApplicationState) -> None:
        if state == Qt.ApplicationState.ApplicationActive:
            injector.on_resume()

    app.applicationStateChanged.connect(_state_changed)

    view.show()
    exit_code = app.exec()
    injector.shutdown()
    logger.info("css-injector exiting with code %s", exit_code)
    return int(exit_code)
