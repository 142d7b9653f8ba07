"""
Tests for probe, blueprint and aggregate effect calculations.
"""

import pytest

from sandbox.effects import (
    apply_effects,
    blueprint_as_effect,
    blueprint_effect,
    cultural_fit,
    probe_effect,
)
from sandbox.models import Blueprint, ContextFactors, WellbeingVector
from conftest import PERFECT_CONTEXT, FixedRandom, SequenceRandom, make_probe


class TestCulturalFit:

    def test_perfect_context_keeps_base_fit(self):
        assert cultural_fit(make_probe(base_fit=0.9), PERFECT_CONTEXT) == pytest.approx(0.9)

    def test_weighted_context_formula(self):
        context = ContextFactors(
            institutional_trust=0.5,
            cultural_openness=0.5,
            implementation_capacity=0.5,
            conflict_level=0.25,
        )
        expected = 0.8 * 0.5 ** 0.3 * 0.5 ** 0.2 * 0.5 ** 0.4 * (1 - 0.25 * 0.8)
        assert cultural_fit(make_probe(base_fit=0.8), context) == pytest.approx(expected)

    def test_conflict_penalty(self):
        context = ContextFactors(1.0, 1.0, 1.0, 1.0, 1.0, 1.0, 1.0)
        assert cultural_fit(make_probe(base_fit=0.9), context) == pytest.approx(0.18)

    def test_stays_within_unit_interval(self):
        context = ContextFactors(0.0, 0.0, 0.0, 0.0, 1.0, 0.0, 0.0)
        assert cultural_fit(make_probe(base_fit=1.0), context) == 0.0


class TestLagGating:
    """A probe with a 3-6 month lag window."""

    probe = make_probe(lag=(3, 6), weights={"health": 2.0})

    def effect_at(self, month):
        return probe_effect(self.probe, PERFECT_CONTEXT, month, 0, rng=FixedRandom(0.5))

    @pytest.mark.parametrize("month", [0, 1, 2])
    def test_pending_before_lag_min(self, month):
        effect = self.effect_at(month)
        assert effect.is_pending
        assert not effect.is_active
        assert effect.effect_multiplier == 0.0
        assert effect.domain_effects["health"].value == 0.0
        assert effect.status == "pending"
        assert effect.months_remaining == 3 - month

    @pytest.mark.parametrize("month", [3, 4])
    def test_partial_strength_inside_window(self, month):
        effect = self.effect_at(month)
        assert effect.is_active
        assert not effect.is_fully_active
        assert 0.0 < effect.effect_multiplier < 1.0
        assert effect.effect_multiplier == pytest.approx(month / 4.5)

    @pytest.mark.parametrize("month", [6, 7, 12])
    def test_full_strength_after_lag_max(self, month):
        effect = self.effect_at(month)
        assert effect.is_fully_active
        assert effect.effect_multiplier == 1.0
        assert effect.lag_progress == 100

    def test_strength_never_decreases(self):
        multipliers = [self.effect_at(m).effect_multiplier for m in range(10)]
        assert multipliers == sorted(multipliers)

    def test_zero_lag_is_active_immediately(self):
        effect = probe_effect(make_probe(lag=(0, 0)), PERFECT_CONTEXT, 0, 0, rng=FixedRandom(0.5))
        assert effect.is_active
        assert effect.lag_progress == 100


class TestProbeEffect:

    def test_value_formula(self):
        # variance = 0.8 + 0.5 * 0.4 = 1.0
        effect = probe_effect(make_probe(), PERFECT_CONTEXT, 1, 0, rng=FixedRandom(0.5))
        assert effect.domain_effects["health"].value == pytest.approx(1.8)
        assert effect.net_effect == pytest.approx(1.8)

    def test_amplification_bonus(self):
        plain = probe_effect(make_probe(), PERFECT_CONTEXT, 1, 0, rng=FixedRandom(0.5))
        amplified = probe_effect(make_probe(), PERFECT_CONTEXT, 1, 0, is_amplified=True, rng=FixedRandom(0.5))
        assert amplified.domain_effects["health"].value == pytest.approx(2.25)
        assert amplified.domain_effects["health"].value == pytest.approx(plain.domain_effects["health"].value * 1.25)
        assert amplified.status == "amplified"

    def test_variance_band(self):
        low = probe_effect(make_probe(), PERFECT_CONTEXT, 1, 0, rng=FixedRandom(0.0))
        high = probe_effect(make_probe(), PERFECT_CONTEXT, 1, 0, rng=FixedRandom(0.999))
        assert low.domain_effects["health"].variance == 0.8
        assert low.domain_effects["health"].value == pytest.approx(1.44)
        assert high.domain_effects["health"].variance == pytest.approx(1.2)

    def test_zero_weights_are_omitted(self):
        probe = make_probe(weights={"health": 1.0, "civic": 0})
        effect = probe_effect(probe, PERFECT_CONTEXT, 1, 0, rng=FixedRandom(0.5))
        assert "civic" not in effect.domain_effects

    def test_negative_weights_produce_losses(self):
        probe = make_probe(weights={"psychological": -1.5})
        effect = probe_effect(probe, PERFECT_CONTEXT, 1, 0, rng=FixedRandom(0.5))
        assert effect.net_effect < 0

    def test_fixed_fit_overrides_context(self):
        effect = probe_effect(make_probe(), PERFECT_CONTEXT, 1, 0, rng=FixedRandom(0.5), fit=0.5)
        assert effect.domain_effects["health"].value == pytest.approx(1.0)


class TestApplyEffects:

    def test_sums_probe_and_risk_contributions(self):
        effect = probe_effect(make_probe(), PERFECT_CONTEXT, 1, 0, rng=FixedRandom(0.5))
        result = apply_effects(WellbeingVector(), [effect], {"health": -1.0, "civic": -3.0})
        assert result.wellbeing.health == pytest.approx(50.8)
        assert result.wellbeing.civic == 47.0
        assert result.attribution["health"] == [
            {"source": "Probe p1", "type": "probe", "value": 1.8, "status": "active"},
            {"source": "Risk Events", "type": "risk", "value": -1.0, "status": "active"},
        ]
        assert result.attribution["social"] == []

    def test_pending_probes_contribute_nothing(self):
        effect = probe_effect(make_probe(lag=(3, 6)), PERFECT_CONTEXT, 1, 0, rng=FixedRandom(0.5))
        result = apply_effects(WellbeingVector(), [effect], {})
        assert result.wellbeing == WellbeingVector()
        assert all(items == [] for items in result.attribution.values())

    def test_result_is_clamped(self):
        effect = probe_effect(make_probe(weights={"health": 5.0}), PERFECT_CONTEXT, 1, 0, rng=FixedRandom(0.5))
        result = apply_effects(WellbeingVector(health=99.5, civic=1.0), [effect], {"civic": -4.0})
        assert result.wellbeing.health == 100.0
        assert result.wellbeing.civic == 0.0

    def test_each_contribution_is_clamped_in_order(self):
        effect = probe_effect(make_probe(), PERFECT_CONTEXT, 1, 0, rng=FixedRandom(0.5))
        result = apply_effects(WellbeingVector(health=99.5), [effect], {"health": -3.0})
        # +1.8 caps at 100 before the risk lands
        assert result.wellbeing.health == 97.0
        assert [item["value"] for item in result.attribution["health"]] == [pytest.approx(1.8), -3.0]

    def test_input_vector_is_not_modified(self):
        start = WellbeingVector()
        apply_effects(start, [], {"health": 3.0})
        assert start.health == 50.0


class TestBlueprint:

    blueprint = Blueprint(name="Master Plan", fit_score=0.5)

    def test_failure_costs_every_domain(self):
        outcome = blueprint_effect(Blueprint(name="Plan", fit_score=0.1), PERFECT_CONTEXT, FixedRandom(0.99))
        assert not outcome.is_success
        assert set(outcome.effects.values()) == {-1}
        assert outcome.message == "Blueprint encountering significant resistance."

    def test_severe_failure(self):
        context = ContextFactors(conflict_level=1.0)
        outcome = blueprint_effect(self.blueprint, context, FixedRandom(0.0))
        # total conflict makes success impossible even on a zero draw
        assert not outcome.is_success
        assert set(outcome.effects.values()) == {-2}

    def test_success_gains(self):
        outcome = blueprint_effect(self.blueprint, PERFECT_CONTEXT, FixedRandom(0.0))
        assert outcome.is_success
        assert set(outcome.effects.values()) == {1}

    def test_success_gains_are_per_domain(self):
        rng = SequenceRandom([0.0, 0.9, 0.1, 0.9, 0.1, 0.9, 0.1])
        outcome = blueprint_effect(self.blueprint, PERFECT_CONTEXT, rng)
        assert list(outcome.effects.values()) == [0, 1, 0, 1, 0, 1]

    def test_wrapped_for_attribution(self):
        rng = SequenceRandom([0.0, 0.9, 0.1, 0.9, 0.1, 0.9, 0.1])
        outcome = blueprint_effect(self.blueprint, PERFECT_CONTEXT, rng)
        effect = blueprint_as_effect(self.blueprint, outcome)
        assert effect.kind == "blueprint"
        assert effect.status == "success"
        assert set(effect.domain_effects) == {"psychological", "civic", "environmental"}

        result = apply_effects(WellbeingVector(), [effect], {})
        assert result.attribution["civic"] == [
            {"source": "Master Plan", "type": "blueprint", "value": 1.0, "status": "success"}
        ]
