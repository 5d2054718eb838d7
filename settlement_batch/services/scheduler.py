"""
SettlementScheduler -- in-process periodic settlement cycles.

Contract:
    Runs one settlement cycle (resolve due keys, then process them as one
    batch) immediately on ``start()`` and then once per interval until
    ``stop()``.  ``trigger_now()`` runs an extra cycle on the caller's thread.

Architecture: settlement_batch/services.  Uses the resolver for selection
    and the executor for settlement; both are built per cycle from
    factories so each cycle gets a fresh session.

Invariants enforced:
    - At most one cycle runs at a time.  The overlap guard is a single-slot
      lock taken with a non-blocking acquire: a request while it is held is
      rejected, never queued and never run in parallel.
    - ``stop()`` lets an in-flight cycle finish and arms no new cycle.
    - The immediate cycle after ``start()`` always runs: when it is rejected
      by the guard it is retried shortly, not after a whole interval.
    - A fatal error aborts only the current cycle; the loop keeps ticking.
    - All timestamps come from the injected Clock.

Non-goals:
    - NOT a distributed scheduler: the overlap guard covers one process.
      Several replicas against one store need an external lock.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime, timedelta
from uuid import uuid4

from sqlalchemy.orm import Session

from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.exceptions import CycleAlreadyRunningError
from settlement_kernel.logging_config import LogContext, get_logger

from settlement_batch.domain.types import (
    AutomationStatus,
    CycleResult,
    CycleStatus,
    CycleTrigger,
    Obligation,
    ObligationKey,
    SchedulerState,
    SettlementItemResult,
    TriggerResult,
)
from settlement_batch.services.executor import SettlementExecutor
from settlement_batch.services.resolver import EligibilityResolver

logger = get_logger("batch.scheduler")

DEFAULT_CYCLE_INTERVAL_SECONDS = 6 * 60 * 60
DEFAULT_LOOKAHEAD_SECONDS = 6 * 60 * 60
DEFAULT_MAX_BATCH_SIZE = 50
DEFAULT_START_RETRY_SECONDS = 1.0


class SettlementScheduler:
    """Periodic settlement cycle runner with an overlap guard.

    Contract:
        - ``start()`` / ``stop()`` drive a background daemon thread.
        - ``trigger_now()`` and ``settle_one()`` share the same guard.
        - ``status()`` reports running state, due count and last check.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        executor_factory: Callable[[Session], SettlementExecutor],
        resolver_factory: Callable[[Session], EligibilityResolver] | None = None,
        clock: Clock | None = None,
        actor_id: str | Callable[[], str] = "automation",
        cycle_interval_seconds: float = DEFAULT_CYCLE_INTERVAL_SECONDS,
        lookahead_seconds: float = DEFAULT_LOOKAHEAD_SECONDS,
        max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
        start_retry_seconds: float = DEFAULT_START_RETRY_SECONDS,
    ):
        if cycle_interval_seconds <= 0:
            raise ValueError(
                f"cycle_interval_seconds must be positive, got {cycle_interval_seconds}"
            )
        if lookahead_seconds < 0:
            raise ValueError(f"lookahead_seconds must be >= 0, got {lookahead_seconds}")
        if max_batch_size <= 0:
            raise ValueError(f"max_batch_size must be positive, got {max_batch_size}")
        if start_retry_seconds <= 0:
            raise ValueError(
                f"start_retry_seconds must be positive, got {start_retry_seconds}"
            )

        self._session_factory = session_factory
        self._executor_factory = executor_factory
        self._resolver_factory = resolver_factory or EligibilityResolver
        self._clock = clock or SystemClock()
        self._actor = actor_id
        self._cycle_interval = cycle_interval_seconds
        self._lookahead = timedelta(seconds=lookahead_seconds)
        self._max_batch_size = max_batch_size
        self._start_retry = min(start_retry_seconds, cycle_interval_seconds)

        self._cycle_guard = threading.Lock()
        self._state_lock = threading.Lock()
        self._state = SchedulerState.STOPPED
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

        self._last_cycle: CycleResult | None = None
        self._last_checked: datetime | None = None
        self._cycle_count = 0

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> bool:
        """Start periodic cycles in a background thread.

        Returns:
            False if already running (no-op), True if started.
        """
        with self._state_lock:
            if self._state == SchedulerState.RUNNING:
                return False
            self._state = SchedulerState.RUNNING
            # A fresh event per run so a previous loop that is still
            # finishing its cycle keeps seeing its own stop signal.
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run_loop,
                args=(self._stop_event,),
                name="settlement-scheduler",
                daemon=True,
            )
            self._thread.start()

        logger.info(
            "scheduler_started",
            extra={
                "cycle_interval_seconds": self._cycle_interval,
                "lookahead_seconds": self._lookahead.total_seconds(),
                "max_batch_size": self._max_batch_size,
            },
        )
        return True

    def stop(self, timeout: float = 30.0) -> bool:
        """Stop arming new cycles and wait for the loop to exit.

        An in-flight cycle completes.  Returns False if already stopped.
        """
        with self._state_lock:
            if self._state == SchedulerState.STOPPED:
                return False
            self._state = SchedulerState.STOPPED
            self._stop_event.set()
            thread = self._thread

        if thread is not None and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=timeout)
        logger.info("scheduler_stopped", extra={"cycle_count": self.cycle_count})
        return True

    @property
    def state(self) -> SchedulerState:
        with self._state_lock:
            return self._state

    @property
    def is_running(self) -> bool:
        return self.state == SchedulerState.RUNNING

    @property
    def last_cycle(self) -> CycleResult | None:
        with self._state_lock:
            return self._last_cycle

    @property
    def last_checked(self) -> datetime | None:
        with self._state_lock:
            return self._last_checked

    @property
    def cycle_count(self) -> int:
        with self._state_lock:
            return self._cycle_count

    # -------------------------------------------------------------------------
    # Cycles
    # -------------------------------------------------------------------------

    def trigger_now(self) -> TriggerResult:
        """Run one on-demand cycle now, unless a cycle is already running."""
        return self.run_cycle(CycleTrigger.MANUAL)

    def run_cycle(self, trigger: CycleTrigger = CycleTrigger.TIMER) -> TriggerResult:
        """Run one guarded cycle (public for testing)."""
        if not self._cycle_guard.acquire(blocking=False):
            logger.warning(
                "cycle_rejected_overlap",
                extra={"trigger": trigger.value},
            )
            return TriggerResult(accepted=False)
        try:
            cycle = self._execute_cycle(trigger)
        finally:
            self._cycle_guard.release()

        with self._state_lock:
            self._last_cycle = cycle
            self._last_checked = cycle.completed_at
            self._cycle_count += 1
        return TriggerResult(accepted=True, cycle=cycle)

    def settle_one(self, key: ObligationKey, caller: str) -> SettlementItemResult:
        """Administrative single-obligation retry under the cycle guard.

        Raises:
            CycleAlreadyRunningError: A cycle currently holds the guard.
        """
        if not self._cycle_guard.acquire(blocking=False):
            logger.warning(
                "cycle_rejected_overlap",
                extra={"trigger": "settle_one", "obligation_key": str(key)},
            )
            raise CycleAlreadyRunningError(caller)
        try:
            session = self._session_factory()
            try:
                result = self._executor_factory(session).process_one(key, caller)
                session.commit()
                return result
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()
        finally:
            self._cycle_guard.release()

    def _caller(self) -> str:
        return self._actor() if callable(self._actor) else self._actor

    def _execute_cycle(self, trigger: CycleTrigger) -> CycleResult:
        cycle_id = str(uuid4())
        started_at = self._clock.now()

        with LogContext.bind(cycle_id=cycle_id, correlation_id=cycle_id):
            logger.info("cycle_started", extra={"trigger": trigger.value})
            session = self._session_factory()
            try:
                resolver = self._resolver_factory(session)
                keys = resolver.due_obligations(
                    started_at, self._lookahead, self._max_batch_size,
                )
                # Release the read transaction before any row is locked.
                session.commit()

                if not keys:
                    cycle = CycleResult(
                        cycle_id=cycle_id,
                        trigger=trigger,
                        status=CycleStatus.COMPLETED,
                        started_at=started_at,
                        completed_at=self._clock.now(),
                    )
                else:
                    executor = self._executor_factory(session)
                    batch = executor.process_batch(
                        keys, self._caller(), cycle_id=cycle_id,
                    )
                    cycle = CycleResult(
                        cycle_id=cycle_id,
                        trigger=trigger,
                        status=CycleStatus.COMPLETED,
                        started_at=started_at,
                        completed_at=self._clock.now(),
                        due_count=len(keys),
                        success_count=batch.success_count,
                        failure_count=batch.failure_count,
                        terminal_count=batch.terminal_count,
                        skipped_count=batch.skipped_count,
                        batch_id=batch.batch_id,
                    )
                logger.info(
                    "cycle_completed",
                    extra={
                        "trigger": trigger.value,
                        "due_count": cycle.due_count,
                        "success_count": cycle.success_count,
                        "failure_count": cycle.failure_count,
                        "terminal_count": cycle.terminal_count,
                        "skipped_count": cycle.skipped_count,
                    },
                )
            except Exception as exc:
                session.rollback()
                cycle = CycleResult(
                    cycle_id=cycle_id,
                    trigger=trigger,
                    status=CycleStatus.ABORTED,
                    started_at=started_at,
                    completed_at=self._clock.now(),
                    error=f"{getattr(exc, 'code', type(exc).__name__)}: {exc}",
                )
                logger.error(
                    "cycle_aborted",
                    extra={"trigger": trigger.value},
                    exc_info=True,
                )
            finally:
                session.close()
        return cycle

    def _run_loop(self, stop_event: threading.Event) -> None:
        """Background loop: one cycle, then wait for the interval or stop.

        The immediate cycle of a fresh start can lose the guard to a cycle
        that is still finishing (a manual trigger, or the previous loop after
        a timed-out ``stop()``).  That first cycle is retried every
        ``start_retry_seconds`` until it runs; later ticks are not retried.
        """
        first = True
        while not stop_event.is_set():
            try:
                accepted = self.run_cycle(CycleTrigger.TIMER).accepted
            except Exception:
                logger.exception("scheduler_tick_exception")
                accepted = True
            if first and not accepted:
                stop_event.wait(timeout=self._start_retry)
                continue
            first = False
            stop_event.wait(timeout=self._cycle_interval)

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def status(self) -> AutomationStatus:
        session = self._session_factory()
        try:
            due_count = self._resolver_factory(session).count_due(
                self._clock.now(), self._lookahead,
            )
        finally:
            session.close()
        with self._state_lock:
            return AutomationStatus(
                running=self._state == SchedulerState.RUNNING,
                due_count=due_count,
                last_checked=self._last_checked,
                last_cycle=self._last_cycle,
                cycle_count=self._cycle_count,
            )

    def due_obligations(self) -> tuple[Obligation, ...]:
        """Summaries of everything the next cycle would consider (uncapped)."""
        session = self._session_factory()
        try:
            return self._resolver_factory(session).summaries(
                self._clock.now(), self._lookahead,
            )
        finally:
            session.close()
