"""Tests for period bucketing and enum parsing."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from keychain.errors import InvalidGranularityError, InvalidMetricError
from keychain.models.enums import Granularity, RateMetric
from keychain.periods import ALL_TIME_EPOCH, parse_granularity, parse_metric, period_start

TS = datetime(2024, 5, 17, 13, 45, 27, 123456, tzinfo=timezone.utc)


class TestPeriodStart:
    @pytest.mark.parametrize(
        ("granularity", "expected"),
        [
            ("minute", datetime(2024, 5, 17, 13, 45, tzinfo=timezone.utc)),
            ("hour", datetime(2024, 5, 17, 13, tzinfo=timezone.utc)),
            ("day", datetime(2024, 5, 17, tzinfo=timezone.utc)),
            ("month", datetime(2024, 5, 1, tzinfo=timezone.utc)),
            ("all_time", datetime(1970, 1, 1, tzinfo=timezone.utc)),
        ],
    )
    def test_truncation(self, granularity: str, expected: datetime) -> None:
        assert period_start(TS, granularity) == expected

    def test_all_time_is_epoch_for_any_timestamp(self) -> None:
        assert period_start(datetime(1999, 12, 31, tzinfo=timezone.utc), Granularity.ALL_TIME) == ALL_TIME_EPOCH
        assert period_start(TS, Granularity.ALL_TIME) == ALL_TIME_EPOCH

    def test_converts_to_utc(self) -> None:
        # 01:30 on the 18th in UTC+5 is still the 17th in UTC
        local = datetime(2024, 5, 18, 1, 30, tzinfo=timezone(timedelta(hours=5)))
        assert period_start(local, "day") == datetime(2024, 5, 17, tzinfo=timezone.utc)

    def test_naive_taken_as_utc(self) -> None:
        naive = datetime(2024, 5, 17, 23, 59)
        assert period_start(naive, "day") == datetime(2024, 5, 17, tzinfo=timezone.utc)

    def test_result_is_aware(self) -> None:
        assert period_start(TS, "hour").tzinfo is not None

    def test_invalid_granularity(self) -> None:
        with pytest.raises(InvalidGranularityError):
            period_start(TS, "week")


class TestParsing:
    def test_granularity_accepts_enum_and_string(self) -> None:
        assert parse_granularity(Granularity.DAY) is Granularity.DAY
        assert parse_granularity("month") is Granularity.MONTH

    def test_metric(self) -> None:
        assert parse_metric("api_tokens") is RateMetric.API_TOKENS

    def test_unknown_metric(self) -> None:
        with pytest.raises(InvalidMetricError) as exc_info:
            parse_metric("gpu_seconds")
        assert "api_requests" in exc_info.value.context["allowed"]

    def test_unknown_granularity_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            parse_granularity("fortnight")
