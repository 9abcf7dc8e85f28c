from unittest.mock import patch

import pytest

from community_microhelp.utils.logging_utils import log_performance


def test_log_performance_sync():
    @log_performance("add")
    def add(a, b):
        return a + b

    with patch("community_microhelp.utils.logging_utils.perf_logger") as perf_logger:
        assert add(2, 3) == 5

    perf_logger.debug.assert_called_once()
    assert perf_logger.debug.call_args.args[1] == "add"
    perf_logger.warning.assert_not_called()


@pytest.mark.asyncio
async def test_log_performance_async_slow_call_warns():
    @log_performance("slow", threshold=-1)
    async def slow():
        return "done"

    with patch("community_microhelp.utils.logging_utils.perf_logger") as perf_logger:
        assert await slow() == "done"

    perf_logger.warning.assert_called_once()
    assert slow.__name__ == "slow"


def test_log_performance_reports_on_error():
    @log_performance("boom")
    def boom():
        raise ValueError("nope")

    with patch("community_microhelp.utils.logging_utils.perf_logger") as perf_logger:
        with pytest.raises(ValueError):
            boom()

    perf_logger.debug.assert_called_once()
