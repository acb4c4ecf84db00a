# Copyright (c) Syntropy Systems
"""Early stopping rules and objective tracking."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from metricwatch.errors import ParseError

logger = logging.getLogger(__name__)

RULE_FIELD_COUNT = 4
RULE_SEPARATOR = ";"


class ComparisonType(str, Enum):
    """How a metric value is compared against a rule threshold."""

    EQUAL = "equal"
    LESS = "less"
    GREATER = "greater"

    @classmethod
    def parse(cls, token: str) -> ComparisonType:
        """Parse a comparison token, case-insensitively."""
        try:
            return cls(token.strip().lower())
        except ValueError as e:
            choices = ", ".join(c.value for c in cls)
            msg = f"Invalid comparison type {token!r}, expected one of: {choices}"
            raise ParseError(msg) from e

    def compare(self, value: float, threshold: float) -> bool:
        """Check ``value`` against ``threshold``."""
        if self is ComparisonType.EQUAL:
            return value == threshold
        if self is ComparisonType.LESS:
            return value < threshold
        return value > threshold


class ObjectiveType(str, Enum):
    """Optimization direction of the objective metric."""

    MAXIMIZE = "maximize"
    MINIMIZE = "minimize"

    @classmethod
    def parse(cls, token: str) -> ObjectiveType:
        """Parse an objective type token, case-insensitively."""
        try:
            return cls(token.strip().lower())
        except ValueError as e:
            msg = f"Invalid objective type {token!r}, expected maximize or minimize"
            raise ParseError(msg) from e


@dataclass(frozen=True)
class StoppingRule:
    """A condition on a metric that contributes to early stopping.

    ``value`` is kept as given on the command line and parsed on demand.
    ``start_step`` is the number of reports of the metric to wait for
    before the rule is evaluated; 0 means it is eligible immediately.
    """

    name: str
    value: str
    comparison: ComparisonType
    start_step: int = 0

    @property
    def threshold(self) -> float:
        """The rule value as a float."""
        try:
            return float(self.value.strip())
        except ValueError as e:
            msg = f"Invalid value {self.value!r} for rule on metric {self.name}"
            raise ParseError(msg) from e

    def is_satisfied(self, value: float) -> bool:
        """Check a metric value against the rule."""
        return self.comparison.compare(value, self.threshold)

    def to_flag(self) -> str:
        """Serialize back to the ``name;value;comparison;start_step`` form."""
        return RULE_SEPARATOR.join(
            [self.name, self.value, self.comparison.value, str(self.start_step)]
        )


def parse_stop_rule(text: str) -> StoppingRule:
    """Parse a ``name;value;comparison;start_step`` rule definition.

    A start step that is not an integer is logged and treated as 0.
    """
    fields = text.split(RULE_SEPARATOR)
    if len(fields) != RULE_FIELD_COUNT:
        msg = f"Invalid early stopping rule: {text!r}"
        raise ParseError(msg)

    name, value, comparison, raw_step = (f.strip() for f in fields)
    if not name:
        msg = f"Early stopping rule without metric name: {text!r}"
        raise ParseError(msg)

    try:
        start_step = int(raw_step)
    except ValueError:
        logger.warning("Parse start step %r to int failed, using 0", raw_step)
        start_step = 0

    if start_step < 0:
        msg = f"Start step must not be negative: {text!r}"
        raise ParseError(msg)

    return StoppingRule(
        name=name,
        value=value,
        comparison=ComparisonType.parse(comparison),
        start_step=start_step,
    )


@dataclass
class ObjectiveTracker:
    """Running best value of the objective metric."""

    metric_name: str
    objective_type: ObjectiveType
    best: float | None = None

    def update(self, value: float) -> float:
        """Record a new objective value and return the best so far."""
        if self.best is None:
            self.best = value
        elif self.objective_type is ObjectiveType.MAXIMIZE and value > self.best:
            self.best = value
        elif self.objective_type is ObjectiveType.MINIMIZE and value < self.best:
            self.best = value
        return self.best
