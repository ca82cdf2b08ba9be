from cascadejobs.ratelimit.service import RateLimitedError, RateLimiter, TwoTierRateLimiter

__all__ = [
    "RateLimitedError",
    "RateLimiter",
    "TwoTierRateLimiter",
]
