import json
import logging
import os
import random

from .exceptions import MalformedCountryError
from .models import (
    DOMAINS,
    Blueprint,
    ContextFactors,
    Country,
    Probe,
    RiskEventTemplate,
    WellbeingVector,
)
from .settings import configure_logging, lag_window, load_settings
from .simulation import Simulation

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = os.path.join(os.path.dirname(__file__), "countries.json")
DEFAULT_LAG = (3, 6)

CONTEXT_KEYS = {
    "institutionalTrust": "institutional_trust",
    "culturalOpenness": "cultural_openness",
    "implementationCapacity": "implementation_capacity",
    "civilSocietyStrength": "civil_society_strength",
    "conflictLevel": "conflict_level",
    "economicStability": "economic_stability",
    "digitalReadiness": "digital_readiness",
}


def _require(record, key, where):
    if not isinstance(record, dict) or key not in record:
        raise MalformedCountryError(f"{where}: missing '{key}'", {"field": key, "record": where})
    return record[key]


def _unit(value, name, where):
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise MalformedCountryError(f"{where}: '{name}' is not a number", {"field": name, "record": where})
    if not 0.0 <= value <= 1.0:
        raise MalformedCountryError(f"{where}: '{name}' must be within [0, 1]", {"field": name, "record": where})
    return value


def _parse_probe(data, where, default_lag=DEFAULT_LAG):
    pid = _require(data, "id", where)
    where = f"{where} probe {pid}"
    weights = data.get("effectWeights", {})
    unknown = [d for d in weights if d not in DOMAINS]
    if unknown:
        raise MalformedCountryError(f"{where}: unknown domains {unknown}", {"record": where})
    lag = data.get("lagMonths", {})
    lag_min, lag_max = int(lag.get("min", default_lag[0])), int(lag.get("max", default_lag[1]))
    if lag_min < 0 or lag_max < lag_min:
        raise MalformedCountryError(f"{where}: invalid lag window", {"record": where})
    return Probe(
        id=str(pid),
        name=_require(data, "name", where),
        description=data.get("description", ""),
        confidence=data.get("confidence", "medium"),
        base_fit=_unit(_require(data, "baseFit", where), "baseFit", where),
        effect_weights={d: float(w) for d, w in weights.items()},
        lag_min=lag_min,
        lag_max=lag_max,
        lesson=data.get("lesson", ""),
        evidence_source=data.get("evidenceSource", ""),
        cultural_note=data.get("culturalFit", ""),
    )


def _parse_risk(data, where):
    rid = _require(data, "id", where)
    where = f"{where} risk {rid}"
    persistent = bool(data.get("isPersistent", False))
    duration = data.get("duration")
    if not persistent and duration is None:
        raise MalformedCountryError(f"{where}: timed risks need a duration", {"record": where})
    domains = tuple(_require(data, "affectedDomains", where))
    unknown = [d for d in domains if d not in DOMAINS]
    if unknown:
        raise MalformedCountryError(f"{where}: unknown domains {unknown}", {"record": where})
    return RiskEventTemplate(
        id=str(rid),
        name=_require(data, "name", where),
        description=data.get("description", ""),
        probability=_unit(_require(data, "probability", where), "probability", where),
        affected_domains=domains,
        modifier=float(_require(data, "modifier", where)),
        is_persistent=persistent,
        duration=None if persistent else int(duration),
        is_variance=bool(data.get("variance", False)),
    )


def parse_country(data, default_lag=DEFAULT_LAG):
    """Build a Country from one JSON record, failing fast on bad data."""
    cid = _require(data, "id", "country")
    where = f"country {cid}"
    wellbeing = _require(data, "wellbeing", where)
    missing = [d for d in DOMAINS if d not in wellbeing]
    if missing:
        raise MalformedCountryError(f"{where}: wellbeing missing {missing}", {"record": where})
    context_data = _require(data, "contextFactors", where)
    context = ContextFactors(**{
        attr: _unit(_require(context_data, key, where), key, where)
        for key, attr in CONTEXT_KEYS.items()
    })
    bp = _require(data, "blueprint", where)
    blueprint = Blueprint(
        name=_require(bp, "name", where),
        description=bp.get("description", ""),
        fit_score=_unit(_require(bp, "fitScore", where), "fitScore", where),
        why_bad=bp.get("whyBad", ""),
    )
    return Country(
        id=str(cid),
        name=_require(data, "name", where),
        wellbeing=WellbeingVector.from_mapping(wellbeing),
        context=context,
        blueprint=blueprint,
        probes=tuple(_parse_probe(p, where, default_lag) for p in data.get("probes", [])),
        risk_events=tuple(_parse_risk(r, where) for r in data.get("riskEvents", [])),
        dimensions=dict(data.get("dimensions", {})),
        flag=data.get("flag", ""),
        stressor=data.get("stressor", ""),
        stressor_detail=data.get("stressorDetail", ""),
    )


def setup_from_config(config_path=DEFAULT_CONFIG, default_lag=DEFAULT_LAG):
    """Loads the country reference data from a JSON config file."""
    with open(config_path, 'r', encoding='utf-8') as f:
        config = json.load(f)
    countries = [parse_country(c, default_lag) for c in _require(config, "countries", config_path)]
    logger.debug("Loaded %d countries from %s", len(countries), config_path)
    return countries


if __name__ == "__main__":
    settings = load_settings()
    configure_logging(settings)
    countries = setup_from_config(default_lag=lag_window(settings))
    sim = Simulation(countries, settings=settings, rng=random.Random(42))

    # Run every country through both strategies for two years
    results = []
    for country in countries:
        for launch in ("launch_fragile", "launch_anti_fragile"):
            sim.select_country(country.id)
            sim.reset_simulation()
            sim.advance_stage("analyze")
            sim.advance_stage("design")
            getattr(sim, launch)()
            sim.run(24)
            stats = sim.get_stats()
            results.append((country.name, stats["strategy"], stats["wellbeingScore"],
                            stats["publicTrust"], len(stats["riskEventLog"])))
            sim.save_export(os.path.join(settings["export"]["directory"], f"cycle-{country.id}-{stats['strategy']}.json"))

    # Print a final report
    print("\n--- Sandbox Run Report (24 months) ---")
    for name, strategy, score, trust, risks in results:
        print(f"{name:<16} {strategy:<12} wellbeing {score:>3}  trust {trust:>3}  risk events {risks}")
