"""
SettlementOrchestrator -- DI container for the settlement engine.

Contract:
    Wires resolver, executor, emitter, scheduler and admin control around
    one settlement capability, one clock and one shared executor state.
    Single place where all settlement dependencies are composed.

Architecture: settlement_batch (top-level).  The canonical entry point for
    configuring and running settlement automation.  The scheduler is an
    ordinary object built here, never a module-level singleton.

Invariants enforced:
    - Clock injection: every service receives the same Clock.
    - One ExecutorState per orchestrator, so batch ids, stats and a rotated
      automation identity are shared by every executor it builds.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy.orm import Session

from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.logging_config import get_logger

from settlement_batch.domain.policy import AUTO_CANCEL_THRESHOLD
from settlement_batch.domain.types import SettlementAuthorization
from settlement_batch.services.control import AutomationControl
from settlement_batch.services.emitter import NotificationSink, SideEffectEmitter
from settlement_batch.services.executor import (
    AUTOMATION_ACTOR_ID,
    ExecutorState,
    SettlementExecutor,
)
from settlement_batch.services.ledger import (
    CredentialCheckedCapability,
    SettlementCapability,
)
from settlement_batch.services.resolver import EligibilityResolver
from settlement_batch.services.scheduler import (
    DEFAULT_CYCLE_INTERVAL_SECONDS,
    DEFAULT_LOOKAHEAD_SECONDS,
    DEFAULT_MAX_BATCH_SIZE,
    SettlementScheduler,
)

if TYPE_CHECKING:
    from settlement_config.schema import AutomationConfig

logger = get_logger("batch.orchestrator")


class SettlementOrchestrator:
    """DI container for settlement automation.

    Contract:
        - ``from_config()`` builds a fully wired orchestrator.
        - ``create_resolver()`` / ``create_executor()`` take a session.
        - ``create_scheduler()`` returns the scheduler (one per orchestrator).
        - ``create_control()`` wraps that scheduler for the admin surface.

    Non-goals:
        - Does NOT start the scheduler automatically; caller decides.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        capability: SettlementCapability,
        authorization: SettlementAuthorization,
        clock: Clock | None = None,
        actor_id: UUID | None = None,
        auto_cancel_threshold: int = AUTO_CANCEL_THRESHOLD,
        settlement_timeout_seconds: float | None = 120,
        cycle_interval_seconds: float = DEFAULT_CYCLE_INTERVAL_SECONDS,
        lookahead_seconds: float = DEFAULT_LOOKAHEAD_SECONDS,
        max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
        sinks: Sequence[NotificationSink] = (),
    ) -> None:
        self._session_factory = session_factory
        self._capability = capability
        self._clock = clock or SystemClock()
        self._actor_id = actor_id or AUTOMATION_ACTOR_ID
        self._state = ExecutorState(authorization)
        self._threshold = auto_cancel_threshold
        self._timeout = settlement_timeout_seconds
        self._cycle_interval = cycle_interval_seconds
        self._lookahead = lookahead_seconds
        self._max_batch_size = max_batch_size
        self._emitter = SideEffectEmitter(session_factory, self._clock, sinks)
        self._scheduler: SettlementScheduler | None = None

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_config(
        cls,
        config: AutomationConfig,
        session_factory: Callable[[], Session],
        capability: SettlementCapability,
        clock: Clock | None = None,
        environ: Mapping[str, str] | None = None,
        sinks: Sequence[NotificationSink] = (),
    ) -> SettlementOrchestrator:
        """Create an orchestrator from an AutomationConfig.

        The capability is wrapped so every batch first checks that the
        signing credential named by ``config.signing_key_env`` is present.
        """
        from settlement_config import resolve_signing_key

        checked = CredentialCheckedCapability(
            capability,
            signing_key=resolve_signing_key(config, environ),
            env_var=config.signing_key_env,
        )
        logger.info(
            "orchestrator_configured",
            extra={
                "config_id": config.config_id,
                "network_id": config.network_id,
                "cycle_interval_seconds": config.cycle_interval_seconds,
                "max_batch_size": config.max_batch_size,
            },
        )
        return cls(
            session_factory=session_factory,
            capability=checked,
            authorization=SettlementAuthorization(
                automation_identity=config.automation_identity,
                owner_identity=config.owner_identity,
            ),
            clock=clock,
            auto_cancel_threshold=config.auto_cancel_threshold,
            settlement_timeout_seconds=config.settlement_timeout_seconds,
            cycle_interval_seconds=config.cycle_interval_seconds,
            lookahead_seconds=config.lookahead_seconds,
            max_batch_size=config.max_batch_size,
            sinks=sinks,
        )

    # -------------------------------------------------------------------------
    # Components
    # -------------------------------------------------------------------------

    def create_resolver(self, session: Session) -> EligibilityResolver:
        return EligibilityResolver(session)

    def create_emitter(self) -> SideEffectEmitter:
        return self._emitter

    def create_executor(self, session: Session) -> SettlementExecutor:
        return SettlementExecutor(
            session=session,
            capability=self._capability,
            clock=self._clock,
            emitter=self._emitter,
            auto_cancel_threshold=self._threshold,
            settlement_timeout_seconds=self._timeout,
            actor_id=self._actor_id,
            state=self._state,
        )

    def create_scheduler(self) -> SettlementScheduler:
        """The orchestrator's scheduler (built on first call)."""
        if self._scheduler is None:
            state = self._state
            self._scheduler = SettlementScheduler(
                session_factory=self._session_factory,
                executor_factory=self.create_executor,
                resolver_factory=self.create_resolver,
                clock=self._clock,
                actor_id=lambda: state.authorization.automation_identity,
                cycle_interval_seconds=self._cycle_interval,
                lookahead_seconds=self._lookahead,
                max_batch_size=self._max_batch_size,
            )
        return self._scheduler

    def create_control(self) -> AutomationControl:
        return AutomationControl(self.create_scheduler())

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def executor_state(self) -> ExecutorState:
        return self._state

    @property
    def authorization(self) -> SettlementAuthorization:
        return self._state.authorization
