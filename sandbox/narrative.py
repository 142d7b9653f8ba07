"""Templated feed messages for simulation events."""
import random
from datetime import datetime

TEMPLATES = {
    "probe_success": [
        "{probeName} showing positive early indicators.",
        "Community feedback on {probeName} exceeds expectations.",
        "Local leaders endorsing {probeName} approach.",
        "{probeName} adoption rates climbing steadily.",
    ],
    "probe_challenge": [
        "{probeName} facing implementation hurdles.",
        "Minor resistance to {probeName} in some regions.",
        "{probeName} progress slower than projected.",
        "Cultural friction reported with {probeName}.",
    ],
    "probe_pending": [
        "{probeName} in preparation phase ({monthsRemaining} months to activation).",
        "Building capacity for {probeName} rollout.",
        "Training underway for {probeName} implementation.",
    ],
    "probe_amplified": [
        "Resources redirected to scale {probeName}.",
        "{probeName} expanded to additional regions.",
        "{probeName} receives priority funding allocation.",
    ],
    "probe_retired": [
        "{probeName} concluded. Lessons captured.",
        "Graceful exit from {probeName} - redirecting resources.",
        "{probeName} retired after evaluation.",
    ],
    "risk_triggered": [
        "ALERT: {riskName} event detected.",
        "{riskName} impacting operations.",
        "CRISIS: {riskName} - mitigation protocols activated.",
    ],
    "risk_ended": [
        "{riskName} crisis subsiding.",
        "Recovery from {riskName} underway.",
        "{riskName} event concluded.",
    ],
    "quarter_summary": [
        "Q{quarter} Report: Wellbeing at {wellbeingScore}. {activeProbes} probes active.",
        "Quarterly review complete. Trust at {publicTrust}%.",
    ],
}

POSITIVE = ("probe_success", "probe_amplified")
NEGATIVE = ("probe_challenge",)


class _Defaults(dict):
    def __missing__(self, key):
        return "?"


def sentiment_for(event_type: str) -> int:
    if event_type in POSITIVE:
        return 1
    # any risk news, starting or ending, reads as bad news
    if event_type in NEGATIVE or "risk" in event_type:
        return -1
    return 0


def narrate(event_type: str, data: dict, rng=random) -> dict:
    """Build a feed message for ``event_type``, picking one template at random."""
    templates = TEMPLATES.get(event_type) or ["System update: " + event_type]
    index = min(int(rng.random() * len(templates)), len(templates) - 1)
    text = templates[index].format_map(_Defaults(data))
    return {
        "timestamp": datetime.now().strftime("%H:%M:%S"),
        "topic": data.get("probeName") or data.get("riskName") or "SYSTEM",
        "text": text,
        "sentiment": sentiment_for(event_type),
        "type": event_type,
    }


def system_message(topic: str, text: str, sentiment: int = 0) -> dict:
    """A fixed message from the engine itself (launches, cycle changes)."""
    return {
        "timestamp": "SYSTEM",
        "topic": topic,
        "text": text,
        "sentiment": sentiment,
        "type": "system",
    }
