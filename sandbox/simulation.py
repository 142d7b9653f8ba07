import copy
import logging
import random
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Deque, Dict, Iterable, List, Optional

from .effects import apply_effects, blueprint_as_effect, blueprint_effect, cultural_fit, probe_effect
from .exceptions import UnknownCountryError
from .export import format_export_data, format_full_history, save_export
from .models import (
    ACTIVE,
    AMPLIFIED,
    ANTIFRAGILE,
    FRAGILE,
    RETIRED,
    STAGES,
    ActiveRisk,
    Country,
    ProbeInstance,
    WellbeingVector,
)
from .narrative import narrate, system_message
from .risks import risk_impacts, roll_risk_events
from .settings import load_settings

logger = logging.getLogger(__name__)

EMOTIONS = ("hope", "fear", "anger", "belonging", "optimism", "anxiety")


@dataclass
class SimulationState:
    """Everything the sandbox knows about one country's session."""
    country_id: str
    wellbeing: WellbeingVector
    cycle_stage: str = STAGES[0]
    completed_stages: List[str] = field(default_factory=list)
    strategy: Optional[str] = None
    initial_wellbeing: Optional[WellbeingVector] = None
    current_month: int = 0
    probes: List[ProbeInstance] = field(default_factory=list)
    active_risks: List[ActiveRisk] = field(default_factory=list)
    risk_event_log: List[dict] = field(default_factory=list)
    message_feed: Deque[dict] = field(default_factory=lambda: deque(maxlen=50))
    emotion_history: Deque[dict] = field(default_factory=lambda: deque(maxlen=30))
    lessons: List[dict] = field(default_factory=list)
    snapshots: List[dict] = field(default_factory=list)
    cycle_history: List[dict] = field(default_factory=list)
    cycle_count: int = 1
    wellbeing_history: List[dict] = field(default_factory=list)
    wellbeing_changes: Dict[str, float] = field(default_factory=dict)
    effect_attribution: Dict[str, List[dict]] = field(default_factory=dict)
    simulation_running: bool = False

    @classmethod
    def fresh(cls, country: Country, feed_capacity: int = 50, emotion_capacity: int = 30) -> "SimulationState":
        return cls(
            country_id=country.id,
            wellbeing=country.wellbeing,
            message_feed=deque(maxlen=feed_capacity),
            emotion_history=deque(maxlen=emotion_capacity),
        )

    @property
    def current_quarter(self) -> int:
        return -(-self.current_month // 3)

    @property
    def current_year(self) -> int:
        return -(-self.current_month // 12)

    def push_message(self, message: dict) -> None:
        self.message_feed.appendleft(message)


class SessionCache:
    """Per-country saved states for the current session.

    States are deep-copied on the way in and out so a stored state can
    never be touched by whichever state is currently live.
    """

    def __init__(self):
        self._states: Dict[str, SimulationState] = {}

    def save(self, state: SimulationState) -> None:
        self._states[state.country_id] = copy.deepcopy(state)

    def restore(self, country_id: str) -> Optional[SimulationState]:
        state = self._states.get(country_id)
        return copy.deepcopy(state) if state is not None else None

    def states(self) -> Iterable[SimulationState]:
        return self._states.values()

    def clear(self) -> None:
        self._states.clear()

    def __contains__(self, country_id) -> bool:
        return country_id in self._states

    def __len__(self) -> int:
        return len(self._states)


class Simulation:
    """Runs the policy sandbox for the selected country, one month per tick."""

    def __init__(self, countries: Iterable[Country], settings: Optional[dict] = None, rng=None):
        self.countries = {c.id: c for c in countries}
        self.settings = settings if settings is not None else load_settings()
        self.rng = rng if rng is not None else random.Random()
        self.cache = SessionCache()
        self.country: Optional[Country] = None
        self.state: Optional[SimulationState] = None

    def _cfg(self, section: str, key: str, default):
        return self.settings.get(section, {}).get(key, default)

    @property
    def tick_seconds(self) -> float:
        return float(self._cfg("simulation", "tick_seconds", 2.0))

    @property
    def simulation_running(self) -> bool:
        return bool(self.state and self.state.simulation_running)

    @property
    def wellbeing_score(self) -> Optional[int]:
        return self.state.wellbeing.score if self.state else None

    @property
    def public_trust(self) -> Optional[int]:
        return self.state.wellbeing.public_trust if self.state else None

    def _fresh_state(self, country: Country) -> SimulationState:
        return SimulationState.fresh(
            country,
            feed_capacity=int(self._cfg("simulation", "message_feed_capacity", 50)),
            emotion_capacity=int(self._cfg("simulation", "emotion_history_capacity", 30)),
        )

    # --- Country selection -------------------------------------------------

    def select_country(self, country_id: str) -> SimulationState:
        """Switch to ``country_id``, parking the outgoing country's state.

        The running loop is stopped and the outgoing state saved before the
        incoming state is installed.
        """
        country = self.countries.get(country_id)
        if country is None:
            raise UnknownCountryError(country_id)
        if self.state is not None:
            self.stop()
            self.cache.save(self.state)
        self.country = country
        restored = self.cache.restore(country_id)
        self.state = restored if restored is not None else self._fresh_state(country)
        logger.info("Selected %s (%s)", country.name, "restored" if restored else "new session")
        return self.state

    # --- Tick loop control -------------------------------------------------

    def start(self) -> bool:
        if self.state is None or self.state.strategy is None:
            return False
        self.state.simulation_running = True
        return True

    def stop(self) -> None:
        if self.state is not None:
            self.state.simulation_running = False

    # --- Stage machine -----------------------------------------------------

    def _complete_stage(self) -> None:
        s = self.state
        if s.cycle_stage not in s.completed_stages:
            s.completed_stages.append(s.cycle_stage)

    def advance_stage(self, next_stage: str) -> bool:
        """Move one step forward through diagnose/analyze/design/monitor/refine.

        Leaving ``design`` needs a strategy launch and leaving ``refine``
        needs a new cycle, so both are refused here.
        """
        s = self.state
        if s is None or next_stage not in STAGES:
            return False
        current = STAGES.index(s.cycle_stage)
        if STAGES.index(next_stage) != current + 1 or s.cycle_stage == "design":
            logger.debug("Ignoring stage change %s -> %s", s.cycle_stage, next_stage)
            return False
        self._complete_stage()
        s.cycle_stage = next_stage
        return True

    def _launch(self, strategy: str) -> None:
        s = self.state
        s.strategy = strategy
        s.initial_wellbeing = s.wellbeing
        s.current_month = 0
        s.active_risks = []
        s.effect_attribution = {}
        s.wellbeing_changes = {}
        s.wellbeing_history = [self._history_entry()]
        self._complete_stage()
        s.cycle_stage = "monitor"
        s.simulation_running = True

    def _can_launch(self) -> bool:
        s = self.state
        if s is None or s.cycle_stage != "design" or s.strategy is not None:
            logger.debug("Ignoring launch outside the design stage")
            return False
        return True

    def launch_fragile(self) -> bool:
        if not self._can_launch():
            return False
        self.state.probes = []
        self._launch(FRAGILE)
        blueprint = self.country.blueprint
        self.state.push_message(system_message("ALERT", f"DEPLOYING BLUEPRINT: {blueprint.name}"))
        logger.info("%s: blueprint '%s' launched", self.country.name, blueprint.name)
        return True

    def launch_anti_fragile(self) -> bool:
        if not self._can_launch():
            return False
        context = self.country.context
        self.state.probes = [
            ProbeInstance(
                probe=p,
                status=ACTIVE,
                start_month=0,
                cultural_fit=cultural_fit(p, context),
                lag_progress=0 if p.avg_lag > 0 else 100,
                is_pending=p.lag_min > 0,
                months_remaining=p.lag_min,
            )
            for p in self.country.probes
        ]
        self._launch(ANTIFRAGILE)
        count = len(self.state.probes)
        self.state.push_message(system_message("DEPLOY", f"Launching {count} safe-to-fail probes..."))
        logger.info("%s: %d probes launched", self.country.name, count)
        return True

    # --- Probe management --------------------------------------------------

    def _is_pending(self, instance: ProbeInstance) -> bool:
        return self.state.current_month - instance.start_month < instance.probe.lag_min

    def manage_probe(self, probe_id, action: str) -> bool:
        """Retire or amplify an active probe; anything else is ignored."""
        s = self.state
        if s is None or s.strategy != ANTIFRAGILE or action not in ("retire", "amplify"):
            return False
        index = next((i for i, p in enumerate(s.probes) if p.id == probe_id), None)
        if index is None:
            return False
        instance = s.probes[index]
        if instance.status != ACTIVE:
            logger.debug("Ignoring %s on %s probe %s", action, instance.status, instance.name)
            return False

        data = {"probeName": instance.name}
        if action == "amplify":
            # Unproven probes cannot be scaled up
            if self._is_pending(instance):
                logger.debug("Ignoring amplify on pending probe %s", instance.name)
                return False
            s.probes[index] = instance.with_status(AMPLIFIED)
            s.push_message(narrate("probe_amplified", data, self.rng))
        else:
            s.probes[index] = instance.with_status(RETIRED)
            s.lessons.append({
                "source": instance.name,
                "text": instance.probe.lesson,
                "evidenceSource": instance.probe.evidence_source,
                "month": s.current_month,
                "cycle": s.cycle_count,
            })
            s.push_message(narrate("probe_retired", data, self.rng))
        return True

    # --- Tick ----------------------------------------------------------------

    def _antifragile_step(self, month: int):
        s = self.state
        context = self.country.context
        bonus = float(self._cfg("probes", "amplification_bonus", 1.25))
        variance_range = (
            float(self._cfg("probes", "variance_min", 0.8)),
            float(self._cfg("probes", "variance_max", 1.2)),
        )
        effects = []
        for i, instance in enumerate(s.probes):
            if instance.status == RETIRED:
                continue
            effect = probe_effect(
                instance.probe,
                context,
                month,
                instance.start_month,
                is_amplified=instance.status == AMPLIFIED,
                rng=self.rng,
                fit=instance.cultural_fit,
                amplification_bonus=bonus,
                variance_range=variance_range,
            )
            s.probes[i] = replace(
                instance,
                lag_progress=effect.lag_progress,
                is_pending=effect.is_pending,
                months_remaining=effect.months_remaining,
            )
            effects.append(effect)

        messages = []
        if effects:
            featured = effects[min(int(self.rng.random() * len(effects)), len(effects) - 1)]
            data = {"probeName": featured.probe_name, "monthsRemaining": featured.months_remaining}
            if featured.is_pending:
                messages.append(narrate("probe_pending", data, self.rng))
            elif featured.net_effect >= 0:
                messages.append(narrate("probe_success", data, self.rng))
            else:
                messages.append(narrate("probe_challenge", data, self.rng))
        return effects, messages

    def _fragile_step(self):
        blueprint = self.country.blueprint
        outcome = blueprint_effect(
            blueprint,
            self.country.context,
            self.rng,
            gain_probability=float(self._cfg("fragile", "success_gain_probability", 0.3)),
            severe_probability=float(self._cfg("fragile", "failure_severe_probability", 0.5)),
        )
        event = "probe_success" if outcome.is_success else "probe_challenge"
        message = narrate(event, {"probeName": blueprint.name}, self.rng)
        return [blueprint_as_effect(blueprint, outcome)], [message]

    def tick(self) -> Optional[dict]:
        """Advance one simulated month. Does nothing unless the loop is running."""
        s = self.state
        if s is None or not s.simulation_running or s.strategy is None:
            return None
        s.current_month += 1
        month = s.current_month
        before = s.wellbeing

        if s.strategy == FRAGILE:
            effects, messages = self._fragile_step()
        else:
            effects, messages = self._antifragile_step(month)

        roll = roll_risk_events(self.country.risk_events, month, s.active_risks, self.rng)
        impacts = risk_impacts(roll.active, self.rng)
        if s.strategy == FRAGILE:
            exposure = float(self._cfg("fragile", "risk_exposure_bonus", 0.5))
            for risk in roll.triggered:
                for domain in risk.template.affected_domains:
                    if domain in impacts:
                        impacts[domain] += risk.template.modifier * exposure

        result = apply_effects(s.wellbeing, effects, impacts)
        s.wellbeing = result.wellbeing
        s.effect_attribution = result.attribution
        s.active_risks = roll.active
        s.wellbeing_changes = s.wellbeing.delta(before)

        for risk in roll.triggered:
            entry = risk.to_dict()
            entry.update({"cycle": s.cycle_count, "status": "active", "triggeredMonth": month})
            s.risk_event_log.append(entry)
            messages.append(narrate("risk_triggered", {"riskName": risk.name}, self.rng))
        for risk in roll.ended:
            for entry in s.risk_event_log:
                if (entry["id"] == risk.id and entry["cycle"] == s.cycle_count
                        and entry["startMonth"] == risk.start_month):
                    entry["status"] = "resolved"
                    entry["endedMonth"] = month
            messages.append(narrate("risk_ended", {"riskName": risk.name}, self.rng))

        s.wellbeing_history.append(self._history_entry())
        s.emotion_history.append(self._emotion_point())

        months_per_quarter = int(self._cfg("simulation", "months_per_quarter", 3))
        if months_per_quarter > 0 and month % months_per_quarter == 0:
            snapshot = self._snapshot()
            s.snapshots.append(snapshot)
            messages.append(narrate("quarter_summary", {
                "quarter": snapshot["quarter"],
                "wellbeingScore": snapshot["wellbeingScore"],
                "activeProbes": snapshot["activeProbes"],
                "publicTrust": s.wellbeing.public_trust,
            }, self.rng))

        for message in messages:
            s.push_message(message)

        return {
            "month": month,
            "wellbeingScore": s.wellbeing.score,
            "triggered": [r.id for r in roll.triggered],
            "ended": [r.id for r in roll.ended],
            "messages": messages,
        }

    def run(self, months: int) -> int:
        """Tick up to ``months`` times without a timer (headless runs)."""
        ticks = 0
        for _ in range(months):
            if self.tick() is None:
                break
            ticks += 1
        return ticks

    def _history_entry(self) -> dict:
        w = self.state.wellbeing
        entry = {"month": self.state.current_month, "score": w.score, "trust": w.public_trust}
        entry.update(w.to_dict())
        return entry

    def _emotion_point(self) -> dict:
        w = self.state.wellbeing
        score, trust = w.score, w.public_trust
        base = {
            "hope": 30 + (score - 50) * 0.4,
            "fear": 20 - (score - 50) * 0.3,
            "anger": 15 - (trust - 50) * 0.2,
            "belonging": 25 + (w.social - 50) * 0.3,
            "optimism": 20 + (score - 50) * 0.3,
            "anxiety": 15 - (w.psychological - 50) * 0.2,
        }
        raw = {}
        for key in EMOTIONS:
            noisy = base[key] + (self.rng.random() - 0.5) * 10
            raw[key] = int(round(max(5, min(30, noisy))))
        total = sum(raw.values())
        point = {"time": self.state.current_month}
        point.update({key: int(round(raw[key] / total * 100)) for key in EMOTIONS})
        return point

    def _snapshot(self) -> dict:
        s = self.state
        return {
            "cycle": s.cycle_count,
            "month": s.current_month,
            "quarter": s.current_quarter,
            "year": s.current_year,
            "wellbeing": s.wellbeing.to_dict(),
            "wellbeingScore": s.wellbeing.score,
            "activeProbes": sum(1 for p in s.probes if p.status in (ACTIVE, AMPLIFIED)),
            "retiredProbes": sum(1 for p in s.probes if p.status == RETIRED),
            "amplifiedProbes": sum(1 for p in s.probes if p.status == AMPLIFIED),
            "activeRisks": len(s.active_risks),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    # --- Cycles ----------------------------------------------------------------

    def _cycle_summary(self) -> dict:
        s = self.state
        initial = s.initial_wellbeing or s.wellbeing
        return {
            "cycle": s.cycle_count,
            "countryId": self.country.id,
            "countryName": self.country.name,
            "strategy": s.strategy,
            "months": s.current_month,
            "initialWellbeing": initial.to_dict(),
            "finalWellbeing": s.wellbeing.to_dict(),
            "wellbeingChange": s.wellbeing.delta(initial),
            "initialScore": initial.score,
            "finalScore": s.wellbeing.score,
            "probes": [{"name": p.name, "status": p.status} for p in s.probes],
            "lessonsLearned": sum(1 for lesson in s.lessons if lesson["cycle"] == s.cycle_count),
            "riskEvents": sum(1 for e in s.risk_event_log if e["cycle"] == s.cycle_count),
            "completedAt": datetime.now(timezone.utc).isoformat(),
        }

    def start_new_cycle(self) -> bool:
        """Close the cycle from ``refine`` and begin the next one at ``diagnose``.

        Wellbeing, lessons and cycle history carry forward.
        """
        s = self.state
        if s is None or s.cycle_stage != "refine":
            logger.debug("Ignoring new cycle request outside the refine stage")
            return False
        self._complete_stage()
        summary = self._cycle_summary()
        s.cycle_history.append(summary)
        logger.info("%s: cycle %d closed (score %d -> %d)", self.country.name,
                    summary["cycle"], summary["initialScore"], summary["finalScore"])

        s.cycle_count += 1
        s.cycle_stage = STAGES[0]
        s.completed_stages = []
        s.strategy = None
        s.initial_wellbeing = None
        s.current_month = 0
        s.probes = []
        s.active_risks = []
        s.effect_attribution = {}
        s.wellbeing_changes = {}
        s.wellbeing_history = []
        s.simulation_running = False
        kept = list(s.message_feed)[:10]
        s.message_feed = deque(kept, maxlen=s.message_feed.maxlen)
        s.push_message(system_message(
            "CYCLE", f"Starting Cycle {s.cycle_count}. Previous lessons retained."
        ))
        return True

    def reset_simulation(self) -> bool:
        """Return the current country to its baseline.

        Cycle history is kept, so cycle numbering carries on from it.
        """
        if self.state is None:
            return False
        history = self.state.cycle_history
        cycle_count = self.state.cycle_count
        self.stop()
        self.state = self._fresh_state(self.country)
        self.state.cycle_history = history
        self.state.cycle_count = cycle_count
        logger.info("%s: simulation reset", self.country.name)
        return True

    def clear_cycle_history(self) -> None:
        if self.state is not None:
            self.state.cycle_history.clear()
        for state in self.cache.states():
            state.cycle_history.clear()

    # --- Exports -----------------------------------------------------------

    def export_cycle_data(self) -> Optional[dict]:
        """Export document for the live cycle, or None before a strategy is chosen."""
        s = self.state
        if s is None or s.strategy is None:
            return None
        cycle_data = {
            "cycleNumber": s.cycle_count,
            "countryName": self.country.name,
            "strategy": s.strategy,
            "currentMonth": s.current_month,
            "initialWellbeing": (s.initial_wellbeing or s.wellbeing).to_dict(),
            "finalWellbeing": s.wellbeing.to_dict(),
            "probes": [p.to_dict() for p in s.probes],
            "riskEventLog": [dict(e) for e in s.risk_event_log if e["cycle"] == s.cycle_count],
            "snapshots": [dict(x) for x in s.snapshots if x["cycle"] == s.cycle_count],
            "lessons": [dict(lesson) for lesson in s.lessons],
        }
        return format_export_data(cycle_data, version=str(self._cfg("export", "version", "2.0")))

    def export_full_history(self) -> dict:
        """Every completed cycle in the session, across all visited countries."""
        cycles = []
        current_id = self.state.country_id if self.state else None
        for state in self.cache.states():
            if state.country_id != current_id:
                cycles.extend(state.cycle_history)
        if self.state is not None:
            cycles.extend(self.state.cycle_history)
        return format_full_history(
            copy.deepcopy(cycles),
            current=self.export_cycle_data(),
            version=str(self._cfg("export", "version", "2.0")),
        )

    def save_export(self, path: Optional[str] = None, full: bool = False) -> bool:
        """Write an export document to disk; failures are logged, never raised."""
        document = self.export_full_history() if full else self.export_cycle_data()
        if document is None:
            return False
        if path is None:
            directory = str(self._cfg("export", "directory", "exports"))
            if full:
                name = "full-history.json"
            else:
                name = f"cycle-{self.country.id}-{self.state.cycle_count}.json"
            path = f"{directory}/{name}"
        return save_export(document, path)

    # --- Read-only projection ----------------------------------------------

    def get_stats(self) -> dict:
        """Returns the current state as plain data for the presentation layer."""
        s = self.state
        if s is None:
            return {}
        return {
            "countryId": s.country_id,
            "countryName": self.country.name,
            "cycleStage": s.cycle_stage,
            "completedStages": list(s.completed_stages),
            "strategy": s.strategy,
            "wellbeing": s.wellbeing.to_dict(),
            "wellbeingScore": s.wellbeing.score,
            "publicTrust": s.wellbeing.public_trust,
            "wellbeingChanges": dict(s.wellbeing_changes),
            "initialWellbeing": s.initial_wellbeing.to_dict() if s.initial_wellbeing else None,
            "probes": [p.to_dict() for p in s.probes],
            "messageFeed": list(s.message_feed),
            "emotionHistory": list(s.emotion_history),
            "lessons": list(s.lessons),
            "cycleCount": s.cycle_count,
            "simulationRunning": s.simulation_running,
            "currentMonth": s.current_month,
            "currentQuarter": s.current_quarter,
            "currentYear": s.current_year,
            "wellbeingHistory": list(s.wellbeing_history),
            "snapshots": list(s.snapshots),
            "effectAttribution": copy.deepcopy(s.effect_attribution),
            "activeRisks": [r.to_dict() for r in s.active_risks],
            "riskEventLog": list(s.risk_event_log),
            "cycleHistory": list(s.cycle_history),
        }
