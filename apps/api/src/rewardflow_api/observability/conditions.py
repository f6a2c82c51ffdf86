from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class ConditionSnapshot:
    evaluations: Dict[str, int]
    conditions: Dict[str, int]
    triggers: Dict[str, Dict[str, int]]
    claims: Dict[str, int]
    failures: Dict[str, int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "evaluations": dict(self.evaluations),
            "conditions": dict(self.conditions),
            "triggers": {key: dict(value) for key, value in self.triggers.items()},
            "claims": dict(self.claims),
            "failures": dict(self.failures),
        }


class ConditionObservabilityStore:
    """Collect condition engine telemetry for dashboards and alerting."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._evaluations: Dict[str, int] = defaultdict(int)
        self._conditions: Dict[str, int] = defaultdict(int)
        self._trigger_actions: Dict[str, int] = defaultdict(int)
        self._trigger_statuses: Dict[str, int] = defaultdict(int)
        self._claims: Dict[str, int] = defaultdict(int)
        self._failures: Dict[str, int] = defaultdict(int)

    def record_evaluation(self, event_type: str, *, matched: int) -> None:
        with self._lock:
            self._evaluations["total"] += 1
            self._evaluations[f"event:{event_type}"] += 1
            if matched == 0:
                self._evaluations["no_match"] += 1

    def record_condition_completed(self, condition_type: str) -> None:
        with self._lock:
            self._conditions[condition_type] += 1

    def record_trigger(self, action: str, status: str) -> None:
        with self._lock:
            self._trigger_actions[action] += 1
            self._trigger_statuses[status] += 1

    def record_claim(self, outcome: str) -> None:
        with self._lock:
            self._claims[outcome] += 1

    def record_failure(self, kind: str) -> None:
        with self._lock:
            self._failures[kind or "unexpected"] += 1

    def snapshot(self) -> ConditionSnapshot:
        with self._lock:
            evaluations = dict(self._evaluations)
            conditions = dict(self._conditions)
            triggers = {
                "by_action": dict(self._trigger_actions),
                "by_status": dict(self._trigger_statuses),
            }
            claims = dict(self._claims)
            failures = dict(self._failures)
        return ConditionSnapshot(
            evaluations=evaluations,
            conditions=conditions,
            triggers=triggers,
            claims=claims,
            failures=failures,
        )

    def reset(self) -> None:
        with self._lock:
            self._evaluations.clear()
            self._conditions.clear()
            self._trigger_actions.clear()
            self._trigger_statuses.clear()
            self._claims.clear()
            self._failures.clear()


_STORE = ConditionObservabilityStore()


def get_condition_store() -> ConditionObservabilityStore:
    return _STORE


__all__ = ["ConditionObservabilityStore", "ConditionSnapshot", "get_condition_store"]
