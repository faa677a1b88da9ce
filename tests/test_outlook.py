import math

import pytest

from lotflow.models import Policy
from lotflow.outlook import (
    LeadTimeEstimate, delivery_odds, estimate_lead_time, estimate_throughput,
    expected_job_revenue, profit_outlook, utilisation,
)

JOBS = 0.95 * 24 / (1.42 + 1.20)      # tester-bound, lot size 60


# ── Throughput and utilisation ────────────────────────────────────────────────

def test_throughput_is_bottleneck_at_working_efficiency():
    assert estimate_throughput(Policy(lot_size=60)) == pytest.approx(JOBS)


def test_throughput_capped_by_demand():
    assert estimate_throughput(Policy(lot_size=60, station2_machines=3)) == pytest.approx(10.0)


def test_tester_utilisation_counts_both_passes():
    rho = utilisation(Policy(lot_size=60), JOBS)
    assert rho["tester"] == pytest.approx(0.95)
    assert rho["stuffer"] == pytest.approx(JOBS / (3 * 24 / 6.50))


# ── Lead time ─────────────────────────────────────────────────────────────────

def test_lead_time_sums_waits_and_service():
    lead = estimate_lead_time(Policy(lot_size=60), JOBS)

    rho1 = JOBS / (3 * 24 / 6.50)
    stuffer = rho1 / (1 - rho1) * (6.50 / 24) / 3 + (6.50 / 24) / 3
    test_1 = 19 * 1.42 / 24 + 1.42 / 24
    tuner = 0.1 * 1.85 / 24 + 1.85 / 24     # tuner under 70% busy
    test_2 = 19 * 1.20 / 24 + 1.20 / 24
    assert lead.mean == pytest.approx(stuffer + test_1 + tuner + test_2)
    assert lead.mean == pytest.approx(2.689, abs=1e-3)
    assert lead.std == pytest.approx(lead.mean * 0.3 * math.sqrt(0.95))


def test_idle_factory_has_no_spread():
    assert estimate_lead_time(Policy(lot_size=60), 0.0).std == 0.0


def test_saturated_pool_never_delivers():
    lead = estimate_lead_time(Policy(lot_size=60), 20.0)
    assert math.isinf(lead.mean)
    assert expected_job_revenue(1, lead) == 0.0
    assert delivery_odds(1, lead).late == 1.0


# ── Revenue and delivery odds ─────────────────────────────────────────────────

def test_revenue_for_a_certain_lead_time():
    assert expected_job_revenue(2, LeadTimeEstimate(3.0, 0.0)) == pytest.approx(500.0)
    assert expected_job_revenue(3, LeadTimeEstimate(0.4, 0.0)) == 1250.0


def test_revenue_averaged_inside_the_decay_band():
    # the whole ±4σ range sits on the straight part of contract 2's curve
    assert expected_job_revenue(2, LeadTimeEstimate(3.0, 0.5)) == pytest.approx(500.0)


def test_revenue_well_inside_the_promise_is_full():
    lead = estimate_lead_time(Policy(lot_size=60), JOBS)
    assert expected_job_revenue(1, lead) == pytest.approx(750.0)
    assert expected_job_revenue(2, lead) < 750.0


def test_delivery_odds_split_at_contract_bounds():
    odds = delivery_odds(2, LeadTimeEstimate(3.0, 1.0))
    assert odds.on_time == pytest.approx(0.02275, abs=1e-4)
    assert odds.late == pytest.approx(0.02275, abs=1e-4)
    assert odds.on_time + odds.partial + odds.late == pytest.approx(1.0)

    at_promise = delivery_odds(1, LeadTimeEstimate(7.0, 1.0))
    assert at_promise.on_time == pytest.approx(0.5)


# ── Profit outlook ────────────────────────────────────────────────────────────

def test_outlook_totals(short_settings):
    outlook = profit_outlook(100, 100.0, 0.0, Policy(lot_size=60), settings=short_settings)
    assert outlook.days_remaining == 20
    assert outlook.jobs_per_day == pytest.approx(JOBS)

    kits = JOBS * 60 * 20
    material = kits * 0.010 + 2 * 1.0
    gross = JOBS * 0.750 * 20
    earned = 100.0 * ((1 + short_settings.daily_cash_rate) ** 20 - 1)
    assert outlook.material_cost == pytest.approx(material)
    assert outlook.gross_revenue == pytest.approx(gross)
    assert outlook.interest_earned == pytest.approx(earned)
    assert outlook.interest_charged == 0.0
    assert outlook.net_revenue == pytest.approx(gross - material + earned)
    assert outlook.revenue_per_day == pytest.approx(outlook.net_revenue / 20)
    assert outlook.odds.on_time == pytest.approx(1.0, abs=1e-3)


def test_outlook_finances_purchases(short_settings):
    current = Policy(lot_size=60)
    outlook = profit_outlook(100, 30.0, 0.0, current.with_machine_added(2),
                             baseline=current, settings=short_settings)
    assert outlook.machine_cost == pytest.approx(80.0)
    assert outlook.upfront_fee == pytest.approx(2.5)
    assert outlook.debt == pytest.approx(52.5)
    assert outlook.interest_charged == pytest.approx(
        52.5 * ((1 + short_settings.daily_debt_rate) ** 20 - 1))
    assert outlook.interest_earned == 0.0
