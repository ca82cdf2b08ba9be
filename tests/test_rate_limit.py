from __future__ import annotations

import threading
from pathlib import Path

import pytest

from cascadejobs.core.config import Settings
from cascadejobs.ratelimit.service import RateLimitedError, TwoTierRateLimiter


def make_limiter(tmp_path: Path, *, global_limit: str, session_limit: str, enabled: bool = True) -> TwoTierRateLimiter:
    settings = Settings(
        state_root=tmp_path / "state",
        rate_limit_enabled=enabled,
        rate_limit_global=global_limit,
        rate_limit_session=session_limit,
    )
    return TwoTierRateLimiter(settings)


def test_session_tier_limits_one_caller_without_affecting_others(tmp_path: Path) -> None:
    limiter = make_limiter(tmp_path, global_limit="100/minute", session_limit="3/minute")

    for _ in range(3):
        limiter.check("alice")
    with pytest.raises(RateLimitedError) as excinfo:
        limiter.check("alice")
    assert "session" in str(excinfo.value)
    assert excinfo.value.retry_after_seconds is not None
    assert excinfo.value.retry_after_seconds >= 1

    limiter.check("bob")


def test_global_tier_is_shared_across_sessions(tmp_path: Path) -> None:
    limiter = make_limiter(tmp_path, global_limit="2/minute", session_limit="10/minute")

    limiter.check("alice")
    limiter.check("bob")
    with pytest.raises(RateLimitedError) as excinfo:
        limiter.check("carol")
    assert "global" in str(excinfo.value)


def test_rejected_call_does_not_consume_global_capacity(tmp_path: Path) -> None:
    limiter = make_limiter(tmp_path, global_limit="3/minute", session_limit="1/minute")

    limiter.check("alice")
    for _ in range(3):
        with pytest.raises(RateLimitedError):
            limiter.check("alice")

    limiter.check("bob")
    limiter.check("carol")


def test_multiple_windows_per_tier(tmp_path: Path) -> None:
    limiter = make_limiter(tmp_path, global_limit="100/minute", session_limit="2/second;3/minute")

    limiter.check("alice")
    limiter.check("alice")
    with pytest.raises(RateLimitedError):
        limiter.check("alice")


def test_disabled_limiter_admits_everything(tmp_path: Path) -> None:
    limiter = make_limiter(tmp_path, global_limit="1/minute", session_limit="1/minute", enabled=False)
    for _ in range(5):
        limiter.check("alice")


def test_blank_session_is_rejected(tmp_path: Path) -> None:
    limiter = make_limiter(tmp_path, global_limit="10/minute", session_limit="10/minute")
    with pytest.raises(ValueError):
        limiter.check("   ")


def test_reset_clears_buckets(tmp_path: Path) -> None:
    limiter = make_limiter(tmp_path, global_limit="10/minute", session_limit="1/minute")
    limiter.check("alice")
    limiter.reset()
    limiter.check("alice")


def test_hit_decides_when_a_concurrent_caller_took_the_last_slot(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    limiter = make_limiter(tmp_path, global_limit="100/minute", session_limit="1/minute")
    limiter.check("alice")

    # The pre-check still sees room, as it would before a racing hit landed.
    monkeypatch.setattr(limiter._limiter, "test", lambda *_args: True)
    with pytest.raises(RateLimitedError) as excinfo:
        limiter.check("alice")
    assert "session" in str(excinfo.value)


def test_concurrent_callers_never_exceed_the_bucket(tmp_path: Path) -> None:
    limiter = make_limiter(tmp_path, global_limit="100/minute", session_limit="5/minute")
    admitted: list[bool] = []
    lock = threading.Lock()

    def call() -> None:
        try:
            limiter.check("alice")
        except RateLimitedError:
            return
        with lock:
            admitted.append(True)

    threads = [threading.Thread(target=call) for _ in range(20)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(admitted) == 5
