"""
Property-based tests for the settlement policy.

Simulates sequences of settlement outcomes against the pure policy
functions and checks the counter invariants hold for every sequence.
"""

from datetime import datetime, timedelta, timezone

from hypothesis import given, settings
from hypothesis import strategies as st

from settlement_batch.domain.policy import (
    advance_next_due,
    cancellation_decision,
    cap_reached,
)

START = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _simulate(outcomes, threshold, max_payments, interval):
    """Apply the executor's counter rules to a list of ledger outcomes."""
    payment_count = 0
    failed = 0
    next_due = START
    active = True
    history = []
    for ok in outcomes:
        if not active:
            break
        if cap_reached(payment_count, max_payments):
            active = False
            break
        if ok:
            payment_count += 1
            failed = 0
            next_due = advance_next_due(next_due, interval)
            if cap_reached(payment_count, max_payments):
                active = False
        else:
            failed += 1
            if cancellation_decision(failed, threshold).cancel:
                active = False
        history.append((payment_count, failed, next_due, active))
    return history


@settings(max_examples=200, deadline=None)
@given(
    outcomes=st.lists(st.booleans(), max_size=40),
    threshold=st.integers(min_value=1, max_value=6),
    max_payments=st.one_of(st.none(), st.integers(min_value=1, max_value=20)),
    interval=st.integers(min_value=60, max_value=90 * 86400),
)
def test_counters_stay_within_bounds(outcomes, threshold, max_payments, interval):
    for payment_count, failed, next_due, _active in _simulate(
        outcomes, threshold, max_payments, interval,
    ):
        assert failed <= threshold
        if max_payments is not None:
            assert payment_count <= max_payments
        # next_due is anchored on the start and moves one interval per success
        assert next_due == START + timedelta(seconds=interval * payment_count)


@settings(max_examples=200, deadline=None)
@given(
    outcomes=st.lists(st.booleans(), min_size=1, max_size=40),
    threshold=st.integers(min_value=1, max_value=6),
)
def test_inactive_only_after_threshold_consecutive_failures(outcomes, threshold):
    history = _simulate(outcomes, threshold, None, 3600)
    for index, (_, failed, _, active) in enumerate(history):
        if not active:
            assert failed == threshold
            assert index == len(history) - 1
            assert all(not ok for ok in outcomes[index - threshold + 1:index + 1])


@settings(max_examples=100, deadline=None)
@given(
    steps=st.integers(min_value=1, max_value=50),
    interval=st.integers(min_value=1, max_value=365 * 86400),
)
def test_next_due_strictly_increases(steps, interval):
    due = START
    for _ in range(steps):
        following = advance_next_due(due, interval)
        assert following > due
        due = following
