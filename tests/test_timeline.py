from dataclasses import replace

import pytest

from lotflow.models import Change, ChangeType, DailyRecord
from lotflow.timeline import expected_uplift, run_timeline, schedule_changes


def _series(start_day, cash_by_day):
    return [DailyRecord(day=start_day + i + 1, cash=c) for i, c in enumerate(cash_by_day)]


def _machine(cost=90.0, priority="HIGH"):
    return Change(ChangeType.CAPACITY, action="Add machine", cost=cost, station=1,
                  priority=priority)


def _only(changes, current_day, cash, series):
    (change,) = schedule_changes(changes, current_day, cash, series)
    return change


# ── Scheduling rules ──────────────────────────────────────────────────────────

def test_free_change_happens_today():
    c = _only([Change(ChangeType.CONTRACT, contract=2, cost=0.0)], 60, 0.0, [])
    assert (c.recommended_day, c.days_to_wait, c.needs_debt) == (60, 0, False)


def test_affordable_change_happens_today():
    c = _only([_machine()], 60, 95.0, [])
    assert c.recommended_day == 60
    assert not c.awaiting_cash and not c.needs_debt


def test_after_debt_day_waits_for_cash_within_window():
    series = _series(160, [40.0] * 19 + [95.0] * 20)
    c = _only([_machine()], 160, 40.0, series)
    assert c.recommended_day == 180
    assert c.days_to_wait == 20
    assert c.awaiting_cash and not c.needs_debt


def test_after_debt_day_borrows_when_cash_is_too_far_off():
    series = _series(160, [40.0] * 40 + [95.0] * 20)
    c = _only([_machine()], 160, 40.0, series)
    assert (c.recommended_day, c.days_to_wait) == (160, 0)
    assert c.needs_debt and not c.awaiting_cash


def test_before_debt_day_waits_for_cash():
    series = _series(60, [50.0] * 29 + [120.0] * 10)
    c = _only([_machine()], 60, 50.0, series)
    assert c.recommended_day == 90
    assert c.awaiting_cash


@pytest.mark.parametrize("cash_by_day", [
    [50.0] * 100 + [120.0] * 10,   # affordable only after day 150
    [50.0] * 200,                  # never affordable
])
def test_before_debt_day_defers_to_debt_day(cash_by_day):
    c = _only([_machine()], 60, 50.0, _series(60, cash_by_day))
    assert c.recommended_day == 150
    assert c.days_to_wait == 90
    assert c.needs_debt


def test_sorted_by_day_then_priority():
    changes = [
        _machine(cost=500.0, priority="CRITICAL"),
        Change(ChangeType.LOT_SIZE, lot_size=30, priority="LOW"),
        Change(ChangeType.CONTRACT, contract=2, priority="HIGH"),
    ]
    out = schedule_changes(changes, 60, 0.0, [])
    assert [(c.recommended_day, c.priority) for c in out] == [
        (60, "HIGH"), (60, "LOW"), (150, "CRITICAL"),
    ]


# ── Timeline runs ─────────────────────────────────────────────────────────────

def test_timeline_applies_scheduled_changes(snapshot, policy, short_settings):
    change = replace(Change(ChangeType.CONTRACT, action="Contract 2", contract=2),
                     recommended_day=105)
    result = run_timeline(snapshot, policy, [change], settings=short_settings)
    assert len(result.series) == 20
    assert result.applied_changes[0]["day"] == 105


def test_no_changes_means_no_uplift(snapshot, policy, short_settings):
    assert expected_uplift(snapshot, policy, [], settings=short_settings) == pytest.approx(0.0)


def test_uplift_unavailable_when_projection_aborts(snapshot, policy, short_settings):
    crowded = replace(snapshot, avg_queue1=20 * 400)
    assert expected_uplift(crowded, policy, [], settings=short_settings) is None
