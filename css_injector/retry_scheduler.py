"""Bounded, backoff-driven re-application of injection work."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from css_injector.logging_utils import LOGGER_NAME
from css_injector.task_scheduler import TaskScheduler

_LOGGER = logging.getLogger(LOGGER_NAME)

# Returns True to stop early; injection bursts never get an acknowledgment and
# return False/None, so they always run to the attempt bound.
RetryAction = Callable[[], Optional[bool]]


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_ms: int = 300
    initial_delay_ms: int = 0
    settle_delay_ms: int = 500

    def delay_after(self, attempt: int) -> int:
        """Delay before the attempt that follows ``attempt`` (1-based)."""

        return max(0, self.base_delay_ms) * max(1, attempt)


@dataclass
class RetryState:
    attempts_made: int = 0
    max_attempts: int = 3
    is_injecting: bool = False

    @property
    def exhausted(self) -> bool:
        return self.attempts_made >= self.max_attempts


class RetryScheduler:
    """Drives one retry run at a time over a ``TaskScheduler``.

    ``start`` begins a run of attempts spaced by ``base_delay_ms * attempt``.
    While a run is in flight (and for ``settle_delay_ms`` after its last
    attempt) further ``start`` calls are skipped. Once ``attempts_made`` reaches
    the bound nothing else runs until ``reset``. A ``start`` skipped after a
    deferred ``reset`` is remembered and runs once the current run settles.
    State is only touched from the scheduler's thread.
    """

    def __init__(
        self,
        name: str,
        policy: RetryPolicy,
        scheduler: TaskScheduler,
        action: RetryAction,
        state: Optional[RetryState] = None,
    ) -> None:
        self._name = name
        self._policy = policy
        self._scheduler = scheduler
        self._action = action
        self._state = state if state is not None else RetryState()
        self._state.max_attempts = max(1, int(policy.max_attempts))
        self._reset_pending = False
        self._start_pending: Optional[str] = None
        self._succeeded = False

    @property
    def state(self) -> RetryState:
        return self._state

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    @property
    def succeeded(self) -> bool:
        return self._succeeded

    def start(self, reason: str = "") -> bool:
        state = self._state
        if state.is_injecting:
            if self._reset_pending:
                self._start_pending = reason or "unspecified"
                _LOGGER.debug("%s run queued (%s) until the previous run settles", self._name, self._start_pending)
                return False
            _LOGGER.debug("%s run skipped (%s): previous run still in flight", self._name, reason or "unspecified")
            return False
        if state.exhausted:
            _LOGGER.debug(
                "%s run skipped (%s): %d/%d attempts used",
                self._name,
                reason or "unspecified",
                state.attempts_made,
                state.max_attempts,
            )
            return False
        state.is_injecting = True
        self._succeeded = False
        _LOGGER.debug("%s run started (%s)", self._name, reason or "unspecified")
        if self._policy.initial_delay_ms > 0:
            self._scheduler.call_later(self._policy.initial_delay_ms, self._attempt)
        else:
            self._attempt()
        return True

    def reset(self) -> None:
        """Clear the attempt counter; deferred until an in-flight run settles."""

        if self._state.is_injecting:
            self._reset_pending = True
            return
        self._state.attempts_made = 0

    def _attempt(self) -> None:
        state = self._state
        state.attempts_made += 1
        attempt = state.attempts_made
        _LOGGER.debug("%s attempt %d/%d", self._name, attempt, state.max_attempts)
        try:
            done = bool(self._action())
        except Exception as exc:
            _LOGGER.warning("%s attempt %d failed: %s", self._name, attempt, exc, exc_info=exc)
            done = False
        if done:
            self._succeeded = True
            _LOGGER.debug("%s succeeded on attempt %d", self._name, attempt)
            self._finish()
            return
        if state.exhausted:
            _LOGGER.debug("%s reached its attempt bound (%d)", self._name, state.max_attempts)
            self._finish()
            return
        self._scheduler.call_later(self._policy.delay_after(attempt), self._attempt)

    def _finish(self) -> None:
        if self._policy.settle_delay_ms > 0:
            self._scheduler.call_later(self._policy.settle_delay_ms, self._settle)
        else:
            self._settle()

    def _settle(self) -> None:
        self._state.is_injecting = False
        if not self._reset_pending:
            return
        self._reset_pending = False
        self._state.attempts_made = 0
        reason, self._start_pending = self._start_pending, None
        if reason is not None:
            self.start(f"{reason}, deferred")
