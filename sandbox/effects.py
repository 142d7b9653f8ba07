"""Effect calculations for probes and blueprints.

Every function here is pure apart from the random source it is handed.
A random source is anything with a ``random()`` method returning a float
in [0, 1); ``random.Random`` instances and the ``random`` module both work.
"""
import random
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, NamedTuple, Optional, Sequence

from .models import DOMAINS, Blueprint, ContextFactors, Probe, WellbeingVector, clamp_unit

AMPLIFICATION_BONUS = 1.25
VARIANCE_RANGE = (0.8, 1.2)


@dataclass(frozen=True)
class DomainEffect:
    value: float
    base_weight: float
    cultural_fit: float
    effect_multiplier: float
    amplification_bonus: float
    variance: float


@dataclass(frozen=True)
class ProbeEffect:
    """Outcome of one probe (or the blueprint) for one tick."""
    probe_id: str
    probe_name: str
    is_active: bool
    is_fully_active: bool
    is_pending: bool
    lag_progress: int
    cultural_fit: float
    effect_multiplier: float
    months_remaining: int
    domain_effects: Dict[str, DomainEffect] = field(default_factory=dict)
    status: str = "active"
    kind: str = "probe"

    @property
    def net_effect(self) -> float:
        return round(sum(e.value for e in self.domain_effects.values()), 2)


class EffectResult(NamedTuple):
    wellbeing: WellbeingVector
    attribution: Dict[str, List[dict]]


class FragileOutcome(NamedTuple):
    effects: Dict[str, float]
    is_success: bool
    message: str


def _bounded(value: float) -> float:
    return max(0.0, min(100.0, value))


def cultural_fit(probe: Probe, context: ContextFactors) -> float:
    """Context-adjusted fit: base_fit * trust^0.3 * openness^0.2 * capacity^0.4 * (1 - 0.8 conflict)."""
    conflict_penalty = 1 - context.conflict_level * 0.8
    fit = (
        probe.base_fit
        * context.institutional_trust ** 0.3
        * context.cultural_openness ** 0.2
        * context.implementation_capacity ** 0.4
        * conflict_penalty
    )
    return clamp_unit(fit)


def probe_effect(
    probe: Probe,
    context: ContextFactors,
    current_month: int,
    start_month: int,
    is_amplified: bool = False,
    rng=random,
    fit: Optional[float] = None,
    amplification_bonus: float = AMPLIFICATION_BONUS,
    variance_range: Sequence[float] = VARIANCE_RANGE,
) -> ProbeEffect:
    """Compute one probe's per-domain effect for the current month.

    The probe contributes nothing while still inside ``lag_min``, ramps with
    lag progress until ``lag_max`` and is at full strength afterwards.
    ``fit`` lets the caller reuse the cultural fit fixed at launch.
    """
    if fit is None:
        fit = cultural_fit(probe, context)
    elapsed = current_month - start_month
    avg_lag = probe.avg_lag
    lag_progress = min(1.0, elapsed / avg_lag) if avg_lag > 0 else 1.0
    lag_progress = max(0.0, lag_progress)
    is_active = elapsed >= probe.lag_min
    is_fully_active = elapsed >= probe.lag_max

    effect_multiplier = 0.0
    if is_active:
        effect_multiplier = 1.0 if is_fully_active else lag_progress

    bonus = amplification_bonus if is_amplified else 1.0
    vmin, vmax = variance_range
    variance = vmin + rng.random() * (vmax - vmin)

    domain_effects = {}
    for domain, weight in probe.effect_weights.items():
        if weight == 0:
            continue
        value = weight * fit * effect_multiplier * bonus * variance
        domain_effects[domain] = DomainEffect(
            value=round(value, 2),
            base_weight=weight,
            cultural_fit=round(fit, 2),
            effect_multiplier=round(effect_multiplier, 2),
            amplification_bonus=bonus,
            variance=round(variance, 2),
        )

    if not is_active:
        status = "pending"
    else:
        status = "amplified" if is_amplified else "active"

    return ProbeEffect(
        probe_id=probe.id,
        probe_name=probe.name,
        is_active=is_active,
        is_fully_active=is_fully_active,
        is_pending=not is_active,
        lag_progress=int(round(lag_progress * 100)),
        cultural_fit=round(fit, 2),
        effect_multiplier=effect_multiplier,
        months_remaining=0 if is_active else max(0, probe.lag_min - elapsed),
        domain_effects=domain_effects,
        status=status,
    )


def apply_effects(
    wellbeing: WellbeingVector,
    probe_effects: Sequence[ProbeEffect],
    risk_impacts: Mapping[str, float],
) -> EffectResult:
    """Add active probe effects and risk impacts onto ``wellbeing``.

    Each contribution is clamped to [0, 100] as it lands; the vector is
    rounded once at the end. Returns the new vector and the per-domain
    attribution list, in the order the contributions were applied.
    """
    values = wellbeing.to_dict()
    attribution = {d: [] for d in DOMAINS}

    for effect in probe_effects:
        if not effect.is_active:
            continue
        for domain, detail in effect.domain_effects.items():
            if domain not in values or detail.value == 0:
                continue
            values[domain] = _bounded(values[domain] + detail.value)
            attribution[domain].append({
                "source": effect.probe_name,
                "type": effect.kind,
                "value": detail.value,
                "status": effect.status,
            })

    for domain, impact in risk_impacts.items():
        if domain not in values or impact == 0:
            continue
        values[domain] = _bounded(values[domain] + impact)
        attribution[domain].append({
            "source": "Risk Events",
            "type": "risk",
            "value": round(impact, 2),
            "status": "active",
        })

    return EffectResult(WellbeingVector(**values), attribution)


def blueprint_effect(
    blueprint: Blueprint,
    context: ContextFactors,
    rng=random,
    gain_probability: float = 0.3,
    severe_probability: float = 0.5,
) -> FragileOutcome:
    """Roll one tick of a top-down blueprint.

    Success (probability fit_score * (1 - conflict)) gives each domain +1
    with ``gain_probability``; failure costs each domain -2 with
    ``severe_probability`` and -1 otherwise.
    """
    is_success = rng.random() < blueprint.fit_score * (1 - context.conflict_level)
    effects = {}
    for domain in DOMAINS:
        if is_success:
            effects[domain] = 1 if rng.random() < gain_probability else 0
        else:
            effects[domain] = -2 if rng.random() < severe_probability else -1
    message = (
        "Blueprint showing early stability signs."
        if is_success
        else "Blueprint encountering significant resistance."
    )
    return FragileOutcome(effects, is_success, message)


def blueprint_as_effect(blueprint: Blueprint, outcome: FragileOutcome) -> ProbeEffect:
    """Wrap a blueprint outcome so it flows through ``apply_effects`` with attribution."""
    domain_effects = {
        domain: DomainEffect(
            value=float(value),
            base_weight=float(value),
            cultural_fit=blueprint.fit_score,
            effect_multiplier=1.0,
            amplification_bonus=1.0,
            variance=1.0,
        )
        for domain, value in outcome.effects.items()
        if value != 0
    }
    return ProbeEffect(
        probe_id="blueprint",
        probe_name=blueprint.name,
        is_active=True,
        is_fully_active=True,
        is_pending=False,
        lag_progress=100,
        cultural_fit=blueprint.fit_score,
        effect_multiplier=1.0,
        months_remaining=0,
        domain_effects=domain_effects,
        status="success" if outcome.is_success else "failure",
        kind="blueprint",
    )
