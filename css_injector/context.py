"""Shared state handed to every injector component."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from css_injector.asset_cache import AssetCache
from css_injector.injector_config import InjectorSettings
from css_injector.logging_utils import get_logger
from css_injector.payload_builders import PayloadBuilder
from css_injector.retry_scheduler import RetryState
from css_injector.surface import Surface
from css_injector.task_scheduler import TaskScheduler


@dataclass
class InjectionState(RetryState):
    """Retry bookkeeping plus the once-per-process first page load flag."""

    first_page_load_seen: bool = False

    def mark_first_page_load(self) -> bool:
        if self.first_page_load_seen:
            return False
        self.first_page_load_seen = True
        return True


@dataclass
class InjectionContext:
    """Owned context object; components read from it and never keep globals.

    ``assets`` is written by its worker thread and published atomically;
    ``state`` is only mutated on the scheduler's (main) thread.
    """

    settings: InjectorSettings
    assets: AssetCache
    surface: Surface
    scheduler: TaskScheduler
    builder: PayloadBuilder = field(default_factory=PayloadBuilder)
    state: InjectionState = field(default_factory=InjectionState)
    logger: logging.Logger = field(default_factory=get_logger)
