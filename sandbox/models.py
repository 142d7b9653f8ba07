from dataclasses import dataclass, field, replace
from typing import Dict, Mapping, Optional, Tuple

DOMAINS = ("health", "psychological", "social", "civic", "economic", "environmental")

CONTEXT_FACTORS = (
    "institutional_trust",
    "cultural_openness",
    "implementation_capacity",
    "civil_society_strength",
    "conflict_level",
    "economic_stability",
    "digital_readiness",
)

STAGES = ("diagnose", "analyze", "design", "monitor", "refine")

FRAGILE = "fragile"
ANTIFRAGILE = "antifragile"

ACTIVE = "active"
AMPLIFIED = "amplified"
RETIRED = "retired"

CONFIDENCE_LEVELS = {
    "high": {
        "label": "High Confidence",
        "description": "Based on RCTs, meta-analyses, or well-established WHO/government statistics",
        "multiplier": 1.0,
    },
    "medium": {
        "label": "Medium Confidence",
        "description": "Based on observational studies, expert reports, or regional data",
        "multiplier": 0.85,
    },
    "low": {
        "label": "Low Confidence",
        "description": "Based on estimates, limited studies, or extrapolated data",
        "multiplier": 0.7,
    },
}


def confidence_info(level: str) -> dict:
    """Display info for an evidence confidence tier (unknown tiers read as medium)."""
    return dict(CONFIDENCE_LEVELS.get(level, CONFIDENCE_LEVELS["medium"]))


def clamp_domain(value: float) -> float:
    return round(max(0.0, min(100.0, float(value))), 1)


def clamp_unit(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


@dataclass(frozen=True)
class WellbeingVector:
    """Six wellbeing domains, each clamped to [0, 100] at one decimal place.

    Every instance is built through ``__post_init__`` so the clamping rule
    lives in exactly one place; use ``shifted`` to derive a new vector.
    """
    health: float = 50.0
    psychological: float = 50.0
    social: float = 50.0
    civic: float = 50.0
    economic: float = 50.0
    environmental: float = 50.0

    def __post_init__(self):
        for domain in DOMAINS:
            object.__setattr__(self, domain, clamp_domain(getattr(self, domain)))

    @classmethod
    def from_mapping(cls, values: Mapping[str, float]) -> "WellbeingVector":
        return cls(**{d: float(values.get(d, 50.0)) for d in DOMAINS})

    def __getitem__(self, domain: str) -> float:
        if domain not in DOMAINS:
            raise KeyError(domain)
        return getattr(self, domain)

    def to_dict(self) -> Dict[str, float]:
        return {d: getattr(self, d) for d in DOMAINS}

    def shifted(self, deltas: Mapping[str, float]) -> "WellbeingVector":
        return WellbeingVector(**{d: getattr(self, d) + deltas.get(d, 0.0) for d in DOMAINS})

    def delta(self, other: "WellbeingVector") -> Dict[str, float]:
        """Per-domain change from ``other`` to this vector."""
        return {d: round(getattr(self, d) - getattr(other, d), 1) for d in DOMAINS}

    @property
    def score(self) -> int:
        return int(round(sum(getattr(self, d) for d in DOMAINS) / len(DOMAINS)))

    @property
    def public_trust(self) -> int:
        return int(round(
            self.civic * 0.3
            + self.psychological * 0.2
            + self.social * 0.3
            + self.score * 0.2
        ))


@dataclass(frozen=True)
class ContextFactors:
    """Country context levers, each in [0, 1]."""
    institutional_trust: float = 0.5
    cultural_openness: float = 0.5
    implementation_capacity: float = 0.5
    civil_society_strength: float = 0.5
    conflict_level: float = 0.0
    economic_stability: float = 0.5
    digital_readiness: float = 0.5

    def to_dict(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name in CONTEXT_FACTORS}


@dataclass(frozen=True)
class Probe:
    """A small, reversible policy experiment available in a country."""
    id: str
    name: str
    description: str = ""
    confidence: str = "medium"
    base_fit: float = 0.5
    effect_weights: Dict[str, float] = field(default_factory=dict)
    lag_min: int = 3
    lag_max: int = 6
    lesson: str = ""
    evidence_source: str = ""
    cultural_note: str = ""

    @property
    def avg_lag(self) -> float:
        return (self.lag_min + self.lag_max) / 2


@dataclass(frozen=True)
class Blueprint:
    """A top-down policy with a single per-tick success probability."""
    name: str
    description: str = ""
    fit_score: float = 0.3
    why_bad: str = ""


@dataclass(frozen=True)
class RiskEventTemplate:
    """An exogenous shock a country may suffer."""
    id: str
    name: str
    description: str = ""
    probability: float = 0.1
    affected_domains: Tuple[str, ...] = ()
    modifier: float = -1.0
    is_persistent: bool = False
    duration: Optional[int] = None
    is_variance: bool = False


@dataclass(frozen=True)
class ActiveRisk:
    template: RiskEventTemplate
    start_month: int
    end_month: Optional[int] = None

    @property
    def id(self) -> str:
        return self.template.id

    @property
    def name(self) -> str:
        return self.template.name

    def to_dict(self) -> dict:
        t = self.template
        return {
            "id": t.id,
            "name": t.name,
            "description": t.description,
            "affectedDomains": list(t.affected_domains),
            "modifier": t.modifier,
            "isPersistent": t.is_persistent,
            "startMonth": self.start_month,
            "endMonth": self.end_month,
        }


@dataclass(frozen=True)
class Country:
    """Represents a country's reference record."""
    id: str
    name: str
    wellbeing: WellbeingVector
    context: ContextFactors
    blueprint: Blueprint
    probes: Tuple[Probe, ...] = ()
    risk_events: Tuple[RiskEventTemplate, ...] = ()
    dimensions: Dict[str, int] = field(default_factory=dict)
    flag: str = ""
    stressor: str = ""
    stressor_detail: str = ""


@dataclass(frozen=True)
class ProbeInstance:
    """A probe deployed in a running cycle, with its live status."""
    probe: Probe
    status: str = ACTIVE
    start_month: int = 0
    cultural_fit: float = 0.0
    lag_progress: int = 0
    is_pending: bool = True
    months_remaining: int = 0

    @property
    def id(self) -> str:
        return self.probe.id

    @property
    def name(self) -> str:
        return self.probe.name

    def with_status(self, status: str) -> "ProbeInstance":
        return replace(self, status=status)

    def to_dict(self) -> dict:
        p = self.probe
        return {
            "id": p.id,
            "name": p.name,
            "status": self.status,
            "confidence": p.confidence,
            "baseFit": p.base_fit,
            "culturalFit": round(self.cultural_fit, 2),
            "lagProgress": self.lag_progress,
            "isPending": self.is_pending,
            "monthsRemaining": self.months_remaining,
            "startMonth": self.start_month,
            "effectWeights": dict(p.effect_weights),
            "evidenceSource": p.evidence_source,
            "lesson": p.lesson,
        }
