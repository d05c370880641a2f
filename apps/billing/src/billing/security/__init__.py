from .rate_limiter import RateLimiter, RateLimitExceeded, get_rate_limiter

__all__ = ["RateLimitExceeded", "RateLimiter", "get_rate_limiter"]
