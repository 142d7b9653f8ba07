import json
import logging
import math
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .exceptions import ExportError

logger = logging.getLogger(__name__)

EXPORT_VERSION = "2.0"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def format_export_data(cycle_data: Dict[str, Any], version: str = EXPORT_VERSION) -> Dict[str, Any]:
    """Shape one cycle's data into the downloadable export document."""
    initial = cycle_data["initialWellbeing"]
    final = cycle_data["finalWellbeing"]
    months = cycle_data["currentMonth"]
    return {
        "exportedAt": _now(),
        "version": version,
        "cycle": {
            "number": cycle_data["cycleNumber"],
            "country": cycle_data["countryName"],
            "strategy": cycle_data["strategy"],
            "duration": {
                "months": months,
                "quarters": math.ceil(months / 3),
            },
        },
        "outcomes": {
            "initialWellbeing": dict(initial),
            "finalWellbeing": dict(final),
            "change": {k: round(final[k] - initial[k], 1) for k in final},
        },
        "probes": [
            {
                "name": p["name"],
                "finalStatus": p["status"],
                "evidenceSource": p.get("evidenceSource", ""),
                "lesson": p.get("lesson", ""),
            }
            for p in cycle_data.get("probes", [])
        ],
        "riskEvents": list(cycle_data.get("riskEventLog", [])),
        "snapshots": list(cycle_data.get("snapshots", [])),
        "lessons": list(cycle_data.get("lessons", [])),
    }


def format_full_history(
    cycle_history,
    current: Optional[Dict[str, Any]] = None,
    version: str = EXPORT_VERSION,
) -> Dict[str, Any]:
    """Shape every completed cycle of the session (plus the live one) for export."""
    cycles = list(cycle_history)
    return {
        "exportedAt": _now(),
        "version": version,
        "totalCycles": len(cycles),
        "countries": sorted({c["countryName"] for c in cycles}),
        "cycles": cycles,
        "currentCycle": current,
    }


def write_export(document: Dict[str, Any], path: str) -> str:
    """Write ``document`` as JSON; raises ExportError on failure."""
    try:
        text = json.dumps(document, indent=2)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(text)
    except (OSError, TypeError, ValueError) as exc:
        raise ExportError(f"Could not write export to {path}", {"path": path, "reason": str(exc)}) from exc
    return path


def save_export(document: Dict[str, Any], path: str) -> bool:
    """Persist an export document, reporting failures instead of raising."""
    try:
        write_export(document, path)
    except ExportError as exc:
        logger.warning("%s: %s", exc.message, exc.details.get("reason"))
        return False
    logger.info("Export written to %s", path)
    return True
