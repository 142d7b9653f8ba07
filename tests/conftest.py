"""
Pytest configuration and fixtures for the policy sandbox tests.
"""

import copy
import itertools

import pytest

from sandbox.models import (
    Blueprint,
    ContextFactors,
    Country,
    Probe,
    RiskEventTemplate,
    WellbeingVector,
)
from sandbox.settings import DEFAULTS
from sandbox.simulation import Simulation


# =============================================================================
# RANDOM SOURCES
# =============================================================================

class FixedRandom:
    """Random source that always returns the same draw."""

    def __init__(self, value):
        self.value = value

    def random(self):
        return self.value


class SequenceRandom:
    """Random source that replays a scripted sequence forever."""

    def __init__(self, values):
        self._values = itertools.cycle(values)

    def random(self):
        return next(self._values)


# =============================================================================
# DATA FIXTURES
# =============================================================================

PERFECT_CONTEXT = ContextFactors(
    institutional_trust=1.0,
    cultural_openness=1.0,
    implementation_capacity=1.0,
    civil_society_strength=1.0,
    conflict_level=0.0,
    economic_stability=1.0,
    digital_readiness=1.0,
)


def make_probe(pid="p1", base_fit=0.9, weights=None, lag=(0, 0), **kwargs):
    return Probe(
        id=pid,
        name=kwargs.pop("name", f"Probe {pid}"),
        base_fit=base_fit,
        effect_weights=weights if weights is not None else {"health": 2.0},
        lag_min=lag[0],
        lag_max=lag[1],
        lesson=kwargs.pop("lesson", f"Lesson from {pid}"),
        evidence_source=kwargs.pop("evidence_source", "Pilot study"),
        **kwargs
    )


def make_risk(rid="r1", probability=1.0, domains=("health",), modifier=-2.0,
              persistent=False, duration=3, variance=False):
    return RiskEventTemplate(
        id=rid,
        name=f"Risk {rid}",
        probability=probability,
        affected_domains=tuple(domains),
        modifier=modifier,
        is_persistent=persistent,
        duration=None if persistent else duration,
        is_variance=variance,
    )


def make_country(cid="TC", name="Testland", fit_score=0.3, probes=(), risks=(),
                 context=PERFECT_CONTEXT, wellbeing=None):
    return Country(
        id=cid,
        name=name,
        wellbeing=wellbeing or WellbeingVector(60, 55, 50, 45, 65, 70),
        context=context,
        blueprint=Blueprint(name=f"{name} Master Plan", fit_score=fit_score),
        probes=tuple(probes),
        risk_events=tuple(risks),
    )


@pytest.fixture
def settings():
    return copy.deepcopy(DEFAULTS)


@pytest.fixture
def country():
    return make_country(probes=[make_probe("p1"), make_probe("p2", lag=(3, 6), weights={"social": 1.0})])


@pytest.fixture
def sim(country, settings):
    simulation = Simulation([country, make_country("OC", "Otherland")], settings=settings, rng=FixedRandom(0.5))
    simulation.select_country(country.id)
    return simulation


def advance_to_design(simulation):
    simulation.advance_stage("analyze")
    simulation.advance_stage("design")
