from __future__ import annotations

import logging
import time
from typing import Protocol

from limits import RateLimitItem, parse_many
from limits.storage import storage_from_string
from limits.strategies import MovingWindowRateLimiter

from cascadejobs.core.config import Settings

logger = logging.getLogger(__name__)

GLOBAL_SCOPE = "cascadejobs:global"
SESSION_SCOPE = "cascadejobs:session"


class RateLimitedError(RuntimeError):
    def __init__(self, message: str, *, retry_after_seconds: int | None = None):
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class RateLimiter(Protocol):
    def check(self, session_id: str) -> None: ...


class TwoTierRateLimiter:
    """Global bucket shared by every caller plus one bucket per session id.

    Both tiers are tested before either is charged, so a rejected call does
    not consume capacity from the tier that would have admitted it.
    """

    def __init__(self, settings: Settings):
        self._enabled = settings.rate_limit_enabled
        self._global_limits: list[RateLimitItem] = parse_many(settings.rate_limit_global)
        self._session_limits: list[RateLimitItem] = parse_many(settings.rate_limit_session)
        self._storage = storage_from_string(settings.rate_limit_storage_uri)
        self._limiter = MovingWindowRateLimiter(self._storage)

    def _retry_after(self, item: RateLimitItem, *identifiers: str) -> int:
        stats = self._limiter.get_window_stats(item, *identifiers)
        return max(1, int(stats.reset_time - time.time()))

    def check(self, session_id: str) -> None:
        if not self._enabled:
            return
        normalized_session = session_id.strip()
        if not normalized_session:
            raise ValueError("session_id cannot be blank")

        tiers = [(item, (GLOBAL_SCOPE,)) for item in self._global_limits]
        tiers += [(item, (SESSION_SCOPE, normalized_session)) for item in self._session_limits]

        for item, identifiers in tiers:
            if not self._limiter.test(item, *identifiers):
                raise self._rejected(item, identifiers, normalized_session)

        # A concurrent caller can take the last slot between test and hit.
        # hit() is atomic per window, so its answer wins; windows charged
        # before the losing one stay charged.
        for item, identifiers in tiers:
            if not self._limiter.hit(item, *identifiers):
                raise self._rejected(item, identifiers, normalized_session)

    def _rejected(self, item: RateLimitItem, identifiers: tuple[str, ...], session_id: str) -> RateLimitedError:
        scope = "global" if identifiers[0] == GLOBAL_SCOPE else "session"
        retry_after = self._retry_after(item, *identifiers)
        logger.info("Rate limited (%s tier, %s) session=%s", scope, item, session_id)
        return RateLimitedError(
            f"Rate limited: {scope} limit of {item} exceeded, retry after {retry_after} seconds",
            retry_after_seconds=retry_after,
        )

    def reset(self) -> None:
        self._storage.reset()
