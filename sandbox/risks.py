import random
from typing import Dict, List, NamedTuple, Sequence

from .models import DOMAINS, ActiveRisk, RiskEventTemplate

MONTHS_PER_YEAR = 12


class RiskRoll(NamedTuple):
    triggered: List[ActiveRisk]
    active: List[ActiveRisk]
    ended: List[ActiveRisk]


def monthly_probability(annual_probability: float) -> float:
    """Compound an annual probability down to a single month."""
    p = max(0.0, min(1.0, float(annual_probability)))
    return 1 - (1 - p) ** (1 / MONTHS_PER_YEAR)


def roll_risk_events(
    templates: Sequence[RiskEventTemplate],
    current_month: int,
    active_risks: Sequence[ActiveRisk] = (),
    rng=random,
) -> RiskRoll:
    """Start new risk events and expire finished ones for this month.

    A template that is already active is never rolled again; timed risks
    leave the active list once they have lasted ``duration`` months.
    Persistent risks stay until something outside the roller removes them.
    """
    active = list(active_risks)
    active_by_id = {r.id: r for r in active}
    triggered = []
    ended = []

    for template in templates:
        current = active_by_id.get(template.id)
        if current is not None:
            if not template.is_persistent and template.duration is not None:
                if current_month - current.start_month >= template.duration:
                    active.remove(current)
                    ended.append(current)
            continue

        if rng.random() < monthly_probability(template.probability):
            end_month = None if template.is_persistent else current_month + (template.duration or 0)
            risk = ActiveRisk(template=template, start_month=current_month, end_month=end_month)
            triggered.append(risk)
            active.append(risk)
            active_by_id[risk.id] = risk

    return RiskRoll(triggered, active, ended)


def risk_impacts(active_risks: Sequence[ActiveRisk], rng=random) -> Dict[str, float]:
    """Sum each active risk's modifier over its affected domains.

    Variance risks draw a signed value in [-|modifier|, +|modifier|] per
    domain instead of applying the fixed modifier.
    """
    impacts = {d: 0.0 for d in DOMAINS}
    for risk in active_risks:
        template = risk.template
        for domain in template.affected_domains:
            if domain not in impacts:
                continue
            if template.is_variance:
                impacts[domain] += (rng.random() - 0.5) * 2 * abs(template.modifier)
            else:
                impacts[domain] += template.modifier
    return impacts
