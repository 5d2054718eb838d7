"""
settlement_batch -- Recurring-obligation batch settlement engine.

Selects obligations that are due, settles each one independently through an
injected ledger capability, cancels obligations after repeated failures or
once their cap or end date is reached, and runs all of that as periodic
cycles with an overlap guard.

Architecture:
    settlement_batch/ is a top-level package.  Nothing in settlement_kernel/
    imports from it.  ``SettlementOrchestrator`` composes:

        EligibilityResolver  -> which keys are due (pure read)
        SettlementExecutor   -> per-item settlement and store mutation
        SideEffectEmitter    -> audit records and notification intents
        SettlementScheduler  -> periodic and on-demand cycles
        AutomationControl    -> admin surface (start/stop/status/trigger)

Invariants:
    - One obligation's failure never affects another in the same batch.
    - next_due advances by exactly one interval per success.
    - Three consecutive failures deactivate an obligation.
    - At most one cycle runs at a time per process.
    - All time comes from an injected Clock.
"""
