"""Tests for retry functionality."""

from unittest.mock import Mock, patch

import pytest
from amqpstorm.exception import AMQPChannelError, AMQPConnectionError

from workqueue.retry import RetryConfig, backoff_delays, is_transient_rmq_error, retry


class TestBackoffDelays:

    def test_exponential_without_jitter(self):
        config = RetryConfig(max_attempts=5, initial_delay=1.0, exponential_base=2.0, jitter=False)

        assert list(backoff_delays(config)) == [1.0, 2.0, 4.0, 8.0]

    def test_capped_at_max_delay(self):
        config = RetryConfig(max_attempts=4, initial_delay=10.0, max_delay=15.0, jitter=False)

        assert list(backoff_delays(config)) == [10.0, 15.0, 15.0]

    def test_jitter_stays_within_factor(self):
        config = RetryConfig(max_attempts=50, initial_delay=1.0, exponential_base=1.0, jitter_factor=0.1)

        for delay in backoff_delays(config):
            assert 0.9 <= delay <= 1.1

    def test_single_attempt_has_no_delays(self):
        assert list(backoff_delays(RetryConfig(max_attempts=1))) == []


class TestRetryDecorator:

    def _fast(self, **kwargs):
        return RetryConfig(initial_delay=0.001, jitter=False, **kwargs)

    def test_success_no_retry(self):
        func = Mock(return_value="connected", __name__="connect")

        assert retry(self._fast(max_attempts=3))(func)() == "connected"
        assert func.call_count == 1

    def test_retries_until_success(self):
        func = Mock(side_effect=[OSError("refused"), OSError("refused"), "connected"], __name__="connect")

        assert retry(self._fast(max_attempts=3))(func)() == "connected"
        assert func.call_count == 3

    def test_raises_after_max_attempts(self):
        func = Mock(side_effect=OSError("refused"), __name__="connect")

        with pytest.raises(OSError):
            retry(self._fast(max_attempts=3))(func)()
        assert func.call_count == 3

    def test_filtered_exception_not_retried(self):
        func = Mock(side_effect=ValueError("bad credentials"), __name__="connect")
        config = self._fast(max_attempts=3, exception_filter=is_transient_rmq_error)

        with pytest.raises(ValueError):
            retry(config)(func)()
        assert func.call_count == 1

    def test_exception_type_not_retried(self):
        func = Mock(side_effect=KeyError("x"), __name__="connect")

        with pytest.raises(KeyError):
            retry(self._fast(max_attempts=3, exceptions=(OSError,)))(func)()
        assert func.call_count == 1

    def test_sleeps_between_attempts(self):
        func = Mock(side_effect=[OSError("refused"), "ok"], __name__="connect")
        config = RetryConfig(max_attempts=2, initial_delay=0.5, jitter=False)

        with patch("time.sleep") as sleep:
            retry(config)(func)()

        sleep.assert_called_once_with(0.5)


class TestIsTransientRmqError:

    @pytest.mark.parametrize("exc", [
        AMQPConnectionError("closed"),
        AMQPChannelError("closed"),
        ConnectionRefusedError("refused"),
        OSError("network unreachable"),
    ])
    def test_transient(self, exc):
        assert is_transient_rmq_error(exc)

    @pytest.mark.parametrize("exc", [ValueError("x"), RuntimeError("x"), KeyError("x")])
    def test_not_transient(self, exc):
        assert not is_transient_rmq_error(exc)
