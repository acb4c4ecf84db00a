# Copyright (c) Syntropy Systems
"""Early stopping decision engine.

The engine holds the stopping rules that have not been satisfied yet.
Observations are fed one at a time; once every rule has been satisfied
the engine emits a single ``TriggerDecision`` and stops evaluating.

Rules with a ``start_step`` only become eligible after the metric has
been reported that many times. The objective metric is compared using
its best value so far rather than the latest one, so a transient dip
does not satisfy a threshold the trial already passed.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from metricwatch.extractor import MetricExtractor, MetricObservation
from metricwatch.rules import ObjectiveTracker, ObjectiveType, StoppingRule

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

logger = logging.getLogger(__name__)


class EngineState(str, Enum):
    """Lifecycle state of the engine."""

    RUNNING = "running"
    TRIGGERED = "triggered"


@dataclass(frozen=True)
class LiveRule:
    """A rule that has not been satisfied yet, with its parsed threshold."""

    rule: StoppingRule
    threshold: float


@dataclass(frozen=True)
class TriggerDecision:
    """Emitted once all stopping rules are satisfied."""

    metric_name: str
    value: float
    satisfied_rules: tuple[StoppingRule, ...]


class EarlyStoppingEngine:
    """Consumes metric observations and decides when to stop a trial."""

    objective: ObjectiveTracker
    extractor: MetricExtractor
    _rules: dict[int, LiveRule]
    _rule_names: set[str]
    _remaining_steps: dict[str, int]
    _satisfied: list[StoppingRule]
    _state: EngineState

    def __init__(
        self,
        rules: Iterable[StoppingRule],
        objective_metric: str,
        objective_type: ObjectiveType,
        extractor: MetricExtractor | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            rules: Stopping rules, all of which must be satisfied to trigger
            objective_metric: Name of the objective metric
            objective_type: Optimization direction of the objective metric
            extractor: Extractor used by ``consume_line`` (default filter if None)

        Raises:
            ParseError: If a rule threshold is not a number

        """
        self._rules = {
            key: LiveRule(rule, rule.threshold) for key, rule in enumerate(rules)
        }

        self._rule_names = {live.rule.name for live in self._rules.values()}
        self._remaining_steps = {
            live.rule.name: live.rule.start_step
            for live in self._rules.values()
            if live.rule.start_step > 0
        }
        self._satisfied = []
        self._state = EngineState.RUNNING
        self.objective = ObjectiveTracker(objective_metric, objective_type)
        self.extractor = extractor or MetricExtractor()

    @property
    def state(self) -> EngineState:
        """Current engine state."""
        return self._state

    @property
    def live_rules(self) -> list[StoppingRule]:
        """Rules that have not been satisfied yet."""
        return [live.rule for live in self._rules.values()]

    @property
    def remaining_steps(self) -> Mapping[str, int]:
        """Reports still needed per metric before its rules are evaluated."""
        return dict(self._remaining_steps)

    def references(self, line: str) -> bool:
        """Cheap check whether a log line mentions any live rule metric."""
        return any(name in line for name in self._rule_names)

    def consume(self, observation: MetricObservation) -> TriggerDecision | None:
        """Feed one observation; return a decision when the trial should stop."""
        if self._state is not EngineState.RUNNING:
            return None

        matching = [
            key for key, live in self._rules.items() if live.rule.name == observation.name
        ]
        if not matching:
            return None

        value = observation.value
        if observation.name == self.objective.metric_name:
            value = self.objective.update(value)

        if observation.name in self._remaining_steps:
            self._remaining_steps[observation.name] -= 1
            if self._remaining_steps[observation.name] > 0:
                return None
            del self._remaining_steps[observation.name]

        for key in matching:
            live = self._rules[key]
            if self._evaluate(live, value):
                logger.info(
                    "Early stopping rule %s reached with value %s",
                    live.rule.to_flag(),
                    value,
                )
                del self._rules[key]
                self._satisfied.append(live.rule)

        self._rule_names = {live.rule.name for live in self._rules.values()}
        if self._rules:
            return None

        self._state = EngineState.TRIGGERED
        logger.info("All early stopping rules reached, trial will be early stopped")
        return TriggerDecision(
            metric_name=observation.name,
            value=value,
            satisfied_rules=tuple(self._satisfied),
        )

    def _evaluate(self, live: LiveRule, value: float) -> bool:
        return live.rule.comparison.compare(value, live.threshold)

    def consume_line(self, line: str) -> TriggerDecision | None:
        """Extract observations from a log line and feed them in order."""
        if self._state is not EngineState.RUNNING or not self.references(line):
            return None

        for observation in self.extractor.extract(line):
            decision = self.consume(observation)
            if decision is not None:
                return decision
        return None
