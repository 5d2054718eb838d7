"""
Typed Exception Hierarchy for the Settlement Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The settlement engine reacts differently to each failure class: a missing
signing credential aborts the whole cycle, a ledger timeout fails a single
item, an unauthorized caller is rejected before anything is read.  Callers
must be able to tell these apart without parsing message strings.

Every exception therefore:
  1. Has a TYPED class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes (not just a message string)

Example - WRONG way to handle errors:
    try:
        executor.process_batch(keys, caller)
    except Exception as e:
        if "credential" in str(e):  # FRAGILE - message might change
            abort_cycle()

Example - RIGHT way (what this module enables):
    try:
        executor.process_batch(keys, caller)
    except SigningCredentialMissingError as e:
        log.error("cycle_aborted", extra={"code": e.code, "env": e.env_var})

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from SettlementKernelError:

    SettlementKernelError (base)
    |
    +-- ConfigurationError
    |   +-- SigningCredentialMissingError
    |
    +-- AuthorizationError
    |   +-- UnauthorizedCallerError
    |
    +-- ObligationError
    |   +-- ObligationNotFoundError
    |
    +-- LedgerError
    |   +-- LedgerSettlementError
    |   +-- SettlementTimeoutError
    |
    +-- SchedulerError
    |   +-- CycleAlreadyRunningError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Configuration   | SIGNING_CREDENTIAL_MISSING  | Automation identity cannot sign (fatal)
----------------|-----------------------------|-----------------------------------------
Authorization   | UNAUTHORIZED_CALLER         | Caller is neither automation nor owner
----------------|-----------------------------|-----------------------------------------
Obligation      | OBLIGATION_NOT_FOUND        | No obligation for (network, ledger id)
----------------|-----------------------------|-----------------------------------------
Ledger          | LEDGER_SETTLEMENT_FAILED    | Ledger rejected / reverted settlement
                | SETTLEMENT_TIMEOUT          | No confirmation within the budget
----------------|-----------------------------|-----------------------------------------
Scheduler       | CYCLE_ALREADY_RUNNING       | Overlap guard held by another cycle
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Settlement attempt updated or deleted

===============================================================================
PROPAGATION
===============================================================================

    LedgerError               -> per item; counted as FAILED, batch continues
    ConfigurationError        -> aborts the current cycle only
    AuthorizationError        -> surfaced to the caller, never retried
    CycleAlreadyRunningError  -> administrative retry rejected, caller decides
"""


class SettlementKernelError(Exception):
    """
    Base exception for all settlement kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "SETTLEMENT_KERNEL_ERROR"


# Configuration exceptions


class ConfigurationError(SettlementKernelError):
    """Base exception for configuration / fatal setup errors."""

    code: str = "CONFIGURATION_ERROR"


class SigningCredentialMissingError(ConfigurationError):
    """
    The automation identity has no signing credential.

    Fatal for the current cycle: raised before any ledger call, so no
    obligation state is mutated.  The next cycle retries unconditionally.
    """

    code: str = "SIGNING_CREDENTIAL_MISSING"

    def __init__(self, env_var: str):
        self.env_var = env_var
        super().__init__(
            f"Signing credential not configured (expected in {env_var})"
        )


# Authorization exceptions


class AuthorizationError(SettlementKernelError):
    """Base exception for authorization errors."""

    code: str = "AUTHORIZATION_ERROR"


class UnauthorizedCallerError(AuthorizationError):
    """Caller is not allowed to perform the requested operation."""

    code: str = "UNAUTHORIZED_CALLER"

    def __init__(self, caller: str, operation: str):
        self.caller = caller
        self.operation = operation
        super().__init__(
            f"Caller {caller!r} is not authorized to {operation}"
        )


# Obligation exceptions


class ObligationError(SettlementKernelError):
    """Base exception for obligation-related errors."""

    code: str = "OBLIGATION_ERROR"


class ObligationNotFoundError(ObligationError):
    """No obligation exists for the given key."""

    code: str = "OBLIGATION_NOT_FOUND"

    def __init__(self, obligation_key: str):
        self.obligation_key = obligation_key
        super().__init__(f"Obligation not found: {obligation_key}")


# Ledger exceptions


class LedgerError(SettlementKernelError):
    """Base exception for ledger interaction errors (always per item)."""

    code: str = "LEDGER_ERROR"


class LedgerSettlementError(LedgerError):
    """The ledger declined or reverted a settlement."""

    code: str = "LEDGER_SETTLEMENT_FAILED"

    def __init__(self, obligation_key: str, reason: str, tx_ref: str | None = None):
        self.obligation_key = obligation_key
        self.reason = reason
        self.tx_ref = tx_ref
        super().__init__(
            f"Settlement failed for {obligation_key}: {reason}"
        )


class SettlementTimeoutError(LedgerError):
    """No confirmation arrived within the settlement budget."""

    code: str = "SETTLEMENT_TIMEOUT"

    def __init__(self, obligation_key: str, timeout_seconds: float):
        self.obligation_key = obligation_key
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Settlement for {obligation_key} not confirmed within "
            f"{timeout_seconds}s"
        )


# Scheduler exceptions


class SchedulerError(SettlementKernelError):
    """Base exception for scheduler errors."""

    code: str = "SCHEDULER_ERROR"


class CycleAlreadyRunningError(SchedulerError):
    """A settlement cycle is already holding the overlap guard."""

    code: str = "CYCLE_ALREADY_RUNNING"

    def __init__(self, requested_by: str):
        self.requested_by = requested_by
        super().__init__(
            f"Settlement cycle already running; request from "
            f"{requested_by} rejected"
        )


# Immutability exceptions


class ImmutabilityError(SettlementKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Settlement attempts are append-only from creation.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
