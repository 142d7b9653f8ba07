"""
Tests for loading country reference data.
"""

import copy
import json

import pytest

from sandbox.exceptions import CountryError, MalformedCountryError
from sandbox.main import parse_country, setup_from_config
from sandbox.models import DOMAINS


RECORD = {
    "id": "TC",
    "name": "Testland",
    "wellbeing": {d: 50 for d in DOMAINS},
    "contextFactors": {
        "institutionalTrust": 0.6,
        "culturalOpenness": 0.5,
        "implementationCapacity": 0.7,
        "civilSocietyStrength": 0.4,
        "conflictLevel": 0.1,
        "economicStability": 0.5,
        "digitalReadiness": 0.3,
    },
    "blueprint": {"name": "Master Plan", "fitScore": 0.3},
    "probes": [
        {"id": "p1", "name": "Pilot", "baseFit": 0.7, "effectWeights": {"health": 1.5}},
    ],
    "riskEvents": [
        {"id": "r1", "name": "Flood", "probability": 0.2, "affectedDomains": ["health"],
         "modifier": -2, "duration": 3},
    ],
}


def record(**changes):
    data = copy.deepcopy(RECORD)
    data.update(changes)
    return data


def test_bundled_countries_load():
    countries = setup_from_config()
    assert [c.id for c in countries] == ["JP", "UK", "IN", "CM"]
    for country in countries:
        assert country.probes
        assert country.risk_events
        assert 0.0 <= country.blueprint.fit_score <= 1.0


def test_bundled_variance_risk():
    india = {c.id: c for c in setup_from_config()}["IN"]
    variance = [r for r in india.risk_events if r.is_variance]
    assert [r.id for r in variance] == ["state_implementation_variance"]
    assert variance[0].is_persistent


def test_parse_record():
    country = parse_country(record())
    assert country.context.implementation_capacity == 0.7
    assert country.blueprint.fit_score == 0.3
    assert country.risk_events[0].duration == 3


def test_missing_lag_uses_default_window():
    country = parse_country(record(), default_lag=(2, 4))
    assert (country.probes[0].lag_min, country.probes[0].lag_max) == (2, 4)


def test_missing_context_is_rejected():
    data = record()
    del data["contextFactors"]
    with pytest.raises(MalformedCountryError) as exc_info:
        parse_country(data)
    assert exc_info.value.details["field"] == "contextFactors"


def test_out_of_range_factor_is_rejected():
    data = record()
    data["contextFactors"]["conflictLevel"] = 1.5
    with pytest.raises(MalformedCountryError):
        parse_country(data)


def test_timed_risk_needs_duration():
    data = record()
    del data["riskEvents"][0]["duration"]
    with pytest.raises(MalformedCountryError):
        parse_country(data)


def test_unknown_domain_is_rejected():
    data = record()
    data["probes"][0]["effectWeights"] = {"happiness": 1.0}
    with pytest.raises(CountryError):
        parse_country(data)


def test_malformed_error_is_a_value_error():
    with pytest.raises(ValueError):
        parse_country(record(wellbeing={"health": 50}))


def test_setup_from_custom_file(tmp_path):
    path = tmp_path / "countries.json"
    path.write_text(json.dumps({"countries": [record()]}))
    countries = setup_from_config(str(path))
    assert [c.name for c in countries] == ["Testland"]
