import pytest

from adaptive.infrastructure.error_handling import (
    ConfigError,
    MissingTokenError,
    RetryConfig,
    RetryHandler,
    UpstreamError,
    is_transient_upstream,
    retry_with_backoff,
)


def test_transient_classification():
    assert is_transient_upstream(UpstreamError("x", status=429))
    assert is_transient_upstream(UpstreamError("x", status=502))
    assert is_transient_upstream(UpstreamError("x", status=None))
    assert not is_transient_upstream(UpstreamError("x", status=400))
    assert not is_transient_upstream(ValueError("x"))


def test_status_codes():
    assert ConfigError("x").status_code == 400
    assert MissingTokenError("x").status_code == 401
    assert ConfigError("x", status_code=404).status_code == 404


def test_retry_handler_backs_off_and_gives_up():
    delays = []
    calls = []

    def flaky():
        calls.append(1)
        raise UpstreamError("busy", status=503)

    handler = RetryHandler(
        RetryConfig(max_retries=2, initial_delay=1.0, jitter=False, should_retry=is_transient_upstream),
        sleep=delays.append,
    )
    with pytest.raises(UpstreamError):
        handler.execute(flaky)
    assert len(calls) == 3
    assert delays == [1.0, 2.0]


def test_retry_handler_does_not_retry_permanent_errors():
    calls = []

    def bad():
        calls.append(1)
        raise UpstreamError("bad", status=400)

    handler = RetryHandler(RetryConfig(max_retries=3, should_retry=is_transient_upstream), sleep=lambda _s: None)
    with pytest.raises(UpstreamError):
        handler.execute(bad)
    assert len(calls) == 1


def test_retry_decorator_returns_first_success():
    attempts = []

    @retry_with_backoff(max_retries=2, initial_delay=0.0)
    def sometimes():
        attempts.append(1)
        if len(attempts) < 2:
            raise RuntimeError("flaky")
        return "ok"

    assert sometimes() == "ok"
    assert len(attempts) == 2


def test_retry_handler_without_attempts_raises_generic_failure():
    handler = RetryHandler(RetryConfig(max_retries=-1), sleep=lambda _s: None)
    with pytest.raises(Exception, match="Retry failed"):
        handler.execute(lambda: "never")
