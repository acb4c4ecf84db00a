# Copyright (c) Syntropy Systems
"""Tests for metric extraction."""

import logging
from pathlib import Path

import pytest

from metricwatch.errors import ParseError
from metricwatch.extractor import (
    UNAVAILABLE_METRIC_VALUE,
    MetricExtractor,
    collect_observation_log,
    compile_filters,
    line_timestamp,
    split_filters,
)


class TestMetricExtractor:
    """Tests for MetricExtractor.extract."""

    def test_default_filter(self) -> None:
        """Test name=value pairs with the default filter."""
        extractor = MetricExtractor()

        observations = extractor.extract("batch2 loss=0.6 accuracy = 0.81 lr=1e-3")

        assert [(o.name, o.value) for o in observations] == [
            ("loss", 0.6),
            ("accuracy", 0.81),
            ("lr", 0.001),
        ]
        assert observations[0].raw == "0.6"

    def test_no_metrics(self) -> None:
        """Test a line without metrics."""
        assert MetricExtractor().extract("epoch 1:") == []

    def test_custom_filters_in_order(self) -> None:
        """Test several filters are applied in order."""
        extractor = MetricExtractor([r"(loss):\s*(\S+)", r"\[(\w+)\]\s+(\S+)"])

        observations = extractor.extract("loss: 0.25 [acc] 0.9")

        assert [(o.name, o.value) for o in observations] == [("loss", 0.25), ("acc", 0.9)]

    def test_filter_with_one_group_is_ignored(self) -> None:
        """Test matches with fewer than two groups are dropped silently."""
        extractor = MetricExtractor([r"loss=(\S+)"])
        assert extractor.extract("loss=0.5") == []

    def test_unparsable_value_is_skipped(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test a bad value is logged and the remaining matches are kept."""
        extractor = MetricExtractor([r"(\w+)=(\S+)"])

        with caplog.at_level(logging.WARNING):
            observations = extractor.extract("loss=nan-ish acc=0.5")

        assert [(o.name, o.value) for o in observations] == [("acc", 0.5)]
        assert "Unable to parse value" in caplog.text

    def test_line_timestamp_is_used(self) -> None:
        """Test a leading RFC3339 timestamp becomes the observation time."""
        observations = MetricExtractor().extract("2024-03-01T10:00:00Z loss=0.5")

        assert len(observations) == 1
        assert observations[0].timestamp == "2024-03-01T10:00:00.000000Z"

    def test_invalid_filter(self) -> None:
        """Test an invalid regular expression raises ParseError."""
        with pytest.raises(ParseError):
            _ = compile_filters(["(unclosed"])


class TestHelpers:
    """Tests for filter and timestamp helpers."""

    def test_split_filters(self) -> None:
        """Test splitting the ;-separated filter option."""
        assert split_filters(None) == []
        assert split_filters(r"(\w+)=(\S+);;(\w+):(\S+)") == [r"(\w+)=(\S+)", r"(\w+):(\S+)"]

    def test_line_timestamp(self) -> None:
        """Test timestamp detection on the first token only."""
        assert line_timestamp("2024-03-01T10:00:00.123+01:00 x=1") == "2024-03-01T09:00:00.123000Z"
        assert line_timestamp("epoch 1 2024-03-01T10:00:00Z") is None
        assert line_timestamp("") is None


class TestCollectObservationLog:
    """Tests for building the observation log from a whole file."""

    def test_collects_configured_metrics(self, temp_dir: Path) -> None:
        """Test only configured metric names are kept."""
        log_file = temp_dir / "metrics.log"
        _ = log_file.write_text(
            "2024-03-01T10:00:00Z epoch 1:\n"
            "2024-03-01T10:00:01Z batch1 loss=0.8\n"
            "2024-03-01T10:00:02Z F1=0.4 lr=0.01\n"
            "\n"
            "2024-03-01T10:00:03Z F1=0.7\n"
        )

        log = collect_observation_log(log_file, ["F1", "loss"])

        assert [(m.time_stamp, m.metric.name, m.metric.value) for m in log.metric_logs] == [
            ("2024-03-01T10:00:01.000000Z", "loss", "0.8"),
            ("2024-03-01T10:00:02.000000Z", "F1", "0.4"),
            ("2024-03-01T10:00:03.000000Z", "F1", "0.7"),
        ]

    def test_missing_objective_is_unavailable(self, temp_dir: Path) -> None:
        """Test an unreported objective gets a single unavailable entry."""
        log_file = temp_dir / "metrics.log"
        _ = log_file.write_text("loss=0.8\nloss=0.6\n")

        log = collect_observation_log(log_file, ["accuracy", "loss"])

        assert log.values_for("loss") == ["0.8", "0.6"]
        assert log.values_for("accuracy") == [UNAVAILABLE_METRIC_VALUE]

    def test_lines_without_timestamp_get_one(self, temp_dir: Path) -> None:
        """Test every entry is timestamped."""
        log_file = temp_dir / "metrics.log"
        _ = log_file.write_text("loss=0.8\n")

        log = collect_observation_log(log_file, ["loss"])

        assert len(log.metric_logs) == 1
        assert log.metric_logs[0].time_stamp.endswith("Z")
