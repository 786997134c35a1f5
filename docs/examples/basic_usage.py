"""Basic usage examples"""

from relay_resilience import (
    CircuitBreakerConfig,
    CircuitOpenException,
    Dependency,
    RateLimitConfig,
    RateLimitExceeded,
    Request,
    ResiliencePipeline,
    RetryConfig,
    create_counter_store,
    status_codes,
)
from relay_resilience.config import configure_logging

# Level and format come from RELAY_LOG_LEVEL / RELAY_LOG_JSON
configure_logging()


# A dependency carries the defaults for every call made against it
class GitHub(Dependency):
    base_url = "https://api.github.com"

    def rate_limit(self):
        return RateLimitConfig(requests=60, per_seconds=3600, retry=True, max_retries=2)

    def retry(self):
        return RetryConfig(times=3, delay=200, status_codes=status_codes(429, range(500, 600)))

    def circuit_breaker(self):
        return CircuitBreakerConfig(failure_threshold=5, reset_timeout=30.0)


# Requests declare their own settings, which win over the dependency's
class GetRepo(Request):
    endpoint = "/repos/{owner}/{repo}"
    circuit_breaker = CircuitBreakerConfig(failure_threshold=2, key="repo:{owner}")

    def __init__(self, owner: str, repo: str, **kwargs):
        super().__init__(**kwargs)
        self.owner = owner
        self.repo = repo
        self.endpoint = f"/repos/{owner}/{repo}"


# Share counters across workers when RELAY_REDIS_URL or REDIS_URL is set
with ResiliencePipeline(GitHub(), counter_store=create_counter_store()) as pipeline:
    try:
        response = pipeline.send(GetRepo("python", "cpython"))
        print(response.status, pipeline.rate_limit_state(GetRepo("python", "cpython")))
    except RateLimitExceeded as e:
        print(f"Slow down, retry in {e.retry_after}s")
    except CircuitOpenException as e:
        print(f"{e.message}, retry in {e.retry_after:.1f}s")

    # A one-off override for a single call
    urgent = GetRepo("python", "peps").with_retry(RetryConfig(times=0))
    print(pipeline.send(urgent).status)
