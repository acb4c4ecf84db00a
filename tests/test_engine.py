# Copyright (c) Syntropy Systems
"""Tests for the early stopping engine."""

import pytest

from metricwatch.engine import EarlyStoppingEngine, EngineState, LiveRule
from metricwatch.errors import ParseError
from metricwatch.extractor import MetricObservation
from metricwatch.rules import ComparisonType, ObjectiveType, StoppingRule


def obs(name: str, value: float) -> MetricObservation:
    """Build an observation."""
    return MetricObservation(name=name, value=value, raw=str(value))


class RecordingEngine(EarlyStoppingEngine):
    """Engine that records every value a rule is evaluated against."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.seen: list[float] = []

    def _evaluate(self, live: LiveRule, value: float) -> bool:
        self.seen.append(value)
        return super()._evaluate(live, value)


def make_engine(
    *rules: StoppingRule,
    objective: str = "accuracy",
    objective_type: ObjectiveType = ObjectiveType.MAXIMIZE,
) -> EarlyStoppingEngine:
    """Build an engine over the given rules."""
    return EarlyStoppingEngine(rules, objective_metric=objective, objective_type=objective_type)


class TestRuleEvaluation:
    """Tests for rule satisfaction and triggering."""

    def test_single_rule_scenario(self) -> None:
        """Test loss < 0.1: 0.5 does nothing, 0.05 triggers."""
        engine = make_engine(StoppingRule("loss", "0.1", ComparisonType.LESS))

        assert engine.consume(obs("loss", 0.5)) is None
        assert len(engine.live_rules) == 1
        assert engine.state is EngineState.RUNNING

        decision = engine.consume(obs("loss", 0.05))

        assert decision is not None
        assert decision.metric_name == "loss"
        assert decision.value == 0.05
        assert engine.live_rules == []
        assert engine.state is EngineState.TRIGGERED

    def test_all_rules_must_be_satisfied(self) -> None:
        """Test the trigger fires only when the last rule is removed."""
        engine = make_engine(
            StoppingRule("loss", "0.1", ComparisonType.LESS),
            StoppingRule("accuracy", "0.9", ComparisonType.GREATER),
        )

        assert engine.consume(obs("loss", 0.05)) is None
        assert [r.name for r in engine.live_rules] == ["accuracy"]

        decision = engine.consume(obs("accuracy", 0.95))

        assert decision is not None
        assert {r.name for r in decision.satisfied_rules} == {"loss", "accuracy"}

    def test_rule_set_shrinks_by_one_per_satisfied_rule(self) -> None:
        """Test the live set never grows and loses exactly the satisfied rule."""
        engine = make_engine(
            StoppingRule("a", "1", ComparisonType.GREATER),
            StoppingRule("b", "1", ComparisonType.GREATER),
            StoppingRule("c", "1", ComparisonType.GREATER),
        )
        sizes = [len(engine.live_rules)]
        for name, value in [("a", 0.0), ("a", 2.0), ("a", 3.0), ("b", 2.0), ("c", 0.5)]:
            _ = engine.consume(obs(name, value))
            sizes.append(len(engine.live_rules))

        assert sizes == [3, 3, 2, 2, 1, 1]

    def test_duplicate_rules_are_kept_separately(self) -> None:
        """Test identical rules are both removed by one satisfying value."""
        rule = StoppingRule("loss", "0.1", ComparisonType.LESS)
        engine = make_engine(rule, rule)

        assert len(engine.live_rules) == 2
        assert engine.consume(obs("loss", 0.01)) is not None

    def test_equal_comparison(self) -> None:
        """Test equality rules."""
        engine = make_engine(StoppingRule("epoch", "3", ComparisonType.EQUAL))

        assert engine.consume(obs("epoch", 2.0)) is None
        assert engine.consume(obs("epoch", 3.0)) is not None

    def test_unrelated_metric_is_ignored(self) -> None:
        """Test observations of metrics without rules change nothing."""
        engine = make_engine(StoppingRule("loss", "0.1", ComparisonType.LESS))

        assert engine.consume(obs("lr", 0.0)) is None
        assert len(engine.live_rules) == 1

    def test_terminal_engine_ignores_observations(self) -> None:
        """Test nothing is evaluated after the trigger."""
        engine = make_engine(StoppingRule("loss", "0.1", ComparisonType.LESS))
        assert engine.consume(obs("loss", 0.01)) is not None

        assert engine.consume(obs("loss", 0.01)) is None
        assert engine.state is EngineState.TRIGGERED

    def test_no_rules_never_triggers(self) -> None:
        """Test an engine without rules never emits a decision."""
        engine = make_engine()
        assert engine.consume(obs("loss", 0.0)) is None
        assert engine.state is EngineState.RUNNING

    def test_threshold_parsed_once(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test rule values are parsed at construction, not per observation."""
        calls: list[str] = []
        original = StoppingRule.threshold

        def counting(rule: StoppingRule) -> float:
            calls.append(rule.name)
            return original.fget(rule)

        monkeypatch.setattr(StoppingRule, "threshold", property(counting))
        engine = make_engine(StoppingRule("loss", "0.1", ComparisonType.LESS))

        for value in (0.5, 0.4, 0.3):
            assert engine.consume(obs("loss", value)) is None

        assert calls == ["loss"]

    def test_bad_threshold_rejected_at_start(self) -> None:
        """Test non-numeric thresholds fail fast."""
        with pytest.raises(ParseError):
            _ = make_engine(StoppingRule("loss", "low", ComparisonType.LESS))


class TestStartStep:
    """Tests for start step counters."""

    def test_start_step_zero_evaluates_first_observation(self) -> None:
        """Test rules without start step are eligible immediately."""
        engine = make_engine(StoppingRule("loss", "1", ComparisonType.LESS, 0))

        assert engine.remaining_steps == {}
        assert engine.consume(obs("loss", 0.5)) is not None

    def test_start_step_scenario(self) -> None:
        """Test acc with start step 2: first report skipped, second evaluated."""
        engine = make_engine(
            StoppingRule("acc", "0.8", ComparisonType.GREATER, 2),
            StoppingRule("loss", "0.1", ComparisonType.LESS, 0),
        )
        assert engine.remaining_steps == {"acc": 2}

        assert engine.consume(obs("acc", 0.9)) is None
        assert engine.remaining_steps == {"acc": 1}
        assert len(engine.live_rules) == 2

        assert engine.consume(obs("acc", 0.95)) is None
        assert [r.name for r in engine.live_rules] == ["loss"]

    def test_rule_not_evaluated_before_kth_report(self) -> None:
        """Test a satisfying value is ignored until the k-th report."""
        engine = make_engine(StoppingRule("loss", "0.1", ComparisonType.LESS, 3))

        assert engine.consume(obs("loss", 0.01)) is None
        assert engine.consume(obs("loss", 0.01)) is None
        assert engine.consume(obs("loss", 0.01)) is not None

    def test_rule_stays_eligible_after_start_step(self) -> None:
        """Test an unsatisfied rule keeps being evaluated after its start step."""
        engine = make_engine(StoppingRule("loss", "0.1", ComparisonType.LESS, 1))

        assert engine.consume(obs("loss", 0.5)) is None
        assert engine.remaining_steps == {}
        assert engine.consume(obs("loss", 0.4)) is None
        assert engine.consume(obs("loss", 0.05)) is not None

    def test_counter_decrements_once_per_observation(self) -> None:
        """Test two rules on one metric share a single decrement per report."""
        engine = make_engine(
            StoppingRule("loss", "0.5", ComparisonType.LESS, 2),
            StoppingRule("loss", "0.1", ComparisonType.LESS, 2),
        )

        assert engine.consume(obs("loss", 0.3)) is None
        assert engine.remaining_steps == {"loss": 1}
        assert len(engine.live_rules) == 2


class TestObjectiveSubstitution:
    """Tests for comparing the objective metric by its best value."""

    def test_rules_see_best_so_far(self) -> None:
        """Test F1 0.4, 0.3, 0.7 is evaluated as 0.4, 0.4, 0.7."""
        engine = RecordingEngine(
            [StoppingRule("F1", "0.4", ComparisonType.LESS)],
            objective_metric="F1",
            objective_type=ObjectiveType.MAXIMIZE,
        )

        assert engine.consume(obs("F1", 0.4)) is None
        # 0.3 < 0.4 would satisfy the rule, but the best value is still 0.4
        assert engine.consume(obs("F1", 0.3)) is None
        assert engine.objective.best == 0.4
        assert engine.consume(obs("F1", 0.7)) is None
        assert engine.objective.best == 0.7
        assert engine.seen == [0.4, 0.4, 0.7]

    def test_minimize_uses_lowest_value(self) -> None:
        """Test a minimized objective is compared by its lowest value."""
        engine = make_engine(
            StoppingRule("loss", "0.5", ComparisonType.GREATER, 2),
            objective="loss",
            objective_type=ObjectiveType.MINIMIZE,
        )

        assert engine.consume(obs("loss", 0.3)) is None
        # 0.9 > 0.5, but the best loss so far is 0.3
        assert engine.consume(obs("loss", 0.9)) is None
        assert engine.objective.best == 0.3

    def test_decision_reports_substituted_value(self) -> None:
        """Test the trigger carries the best value the rule saw."""
        engine = make_engine(
            StoppingRule("accuracy", "0.8", ComparisonType.GREATER, 2),
            objective="accuracy",
        )

        assert engine.consume(obs("accuracy", 0.9)) is None
        decision = engine.consume(obs("accuracy", 0.5))

        assert decision is not None
        assert decision.value == 0.9


class TestConsumeLine:
    """Tests for feeding raw log lines."""

    def test_consume_line_triggers(self) -> None:
        """Test extraction and evaluation from a log line."""
        engine = make_engine(StoppingRule("loss", "0.1", ComparisonType.LESS))

        assert engine.consume_line("epoch 1 loss=0.5") is None
        decision = engine.consume_line("epoch 2 loss=0.05")

        assert decision is not None
        assert decision.value == 0.05

    def test_line_without_rule_metric_is_skipped(self) -> None:
        """Test the fast path for lines not mentioning any rule metric."""
        engine = make_engine(StoppingRule("loss", "0.1", ComparisonType.LESS))
        assert not engine.references("accuracy=0.5")
        assert engine.consume_line("accuracy=0.5") is None

    def test_stops_at_first_trigger_in_line(self) -> None:
        """Test later metrics on the triggering line are not evaluated."""
        engine = make_engine(
            StoppingRule("loss", "0.1", ComparisonType.LESS),
            objective="accuracy",
        )

        decision = engine.consume_line("loss=0.05 accuracy=0.2")

        assert decision is not None
        assert engine.objective.best is None
