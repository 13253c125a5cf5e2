import pytest
from pydantic import ValidationError

from shared.config.schema import MainConfig
from shared.utils.timeframes import sort_timeframes, timeframe_to_seconds


def test_timeframe_to_seconds():
    assert timeframe_to_seconds("15m") == 900
    assert timeframe_to_seconds(" 1H ") == 3600
    assert timeframe_to_seconds("1d") == 86_400
    assert timeframe_to_seconds("2w") == 2 * 604_800


@pytest.mark.parametrize("tf", ["1M", "3M", "0m", "1y", "", "m15"])
def test_timeframe_to_seconds_rejects(tf):
    with pytest.raises(ValueError):
        timeframe_to_seconds(tf)


def test_month_timeframe_rejected_in_config():
    with pytest.raises(ValidationError):
        MainConfig.model_validate({"data": {"timeframes": ["1M"]}})


def test_sort_timeframes():
    assert sort_timeframes(["1d", "15m", "4h", "1m"]) == ["1m", "15m", "4h", "1d"]
