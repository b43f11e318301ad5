"""Token bucket rate limiting for GraphQL requests.

Every RscClient draws one token per HTTP request from a named bucket, so a
long poll loop or a large Exchange fan-out never bursts past the platform's
request budget. Buckets are shared per name within the process: two clients
pointed at the same endpoint share the same budget.
"""

import threading
import time

from m365_recovery.core.errors import RateLimitExceeded
from m365_recovery.core.logging import get_logger

logger = get_logger(__name__)

# Longest we are willing to block for a token before giving up
MAX_WAIT_SECONDS = 20.0


class TokenBucket:
    """Thread-safe token bucket.

    Tokens refill continuously at ``rate`` per second up to ``capacity``.
    ``consume()`` blocks until enough tokens are available.

    Example:
        limiter = TokenBucket(rate=5.0, capacity=5)
        limiter.consume()  # waits if the bucket is empty
    """

    def __init__(
        self,
        rate: float = 1.0,
        capacity: int = 1,
        initial_tokens: float | None = None,
    ):
        """Initialize a token bucket.

        Args:
            rate: Token refill rate per second
            capacity: Maximum number of tokens in the bucket
            initial_tokens: Starting tokens (defaults to capacity)
        """
        if rate <= 0:
            raise ValueError(f"Token bucket rate must be positive, got {rate}")
        self.rate = rate
        self.capacity = capacity
        self.tokens: float = capacity if initial_tokens is None else initial_tokens
        self.last_refill = time.monotonic()
        self._lock = threading.Lock()

    def consume(self, tokens: int = 1) -> bool:
        """Consume tokens, sleeping until they are available.

        Args:
            tokens: Number of tokens to consume

        Returns:
            True once the tokens were consumed

        Raises:
            RateLimitExceeded: If the request can never fit the bucket or would
                need to wait longer than MAX_WAIT_SECONDS
        """
        if tokens > self.capacity:
            raise RateLimitExceeded(
                f"Requested tokens ({tokens}) exceed bucket capacity ({self.capacity})"
            )

        with self._lock:
            self._refill()
            if self.tokens >= tokens:
                self.tokens -= tokens
                return True

            wait_time = (tokens - self.tokens) / self.rate
            if wait_time > MAX_WAIT_SECONDS:
                logger.warning(
                    "Rate limit would require excessive wait",
                    wait_time=wait_time,
                    tokens_needed=tokens,
                )
                raise RateLimitExceeded(f"Rate limit exceeded, would require {wait_time:.2f}s wait")

        logger.debug("Waiting for token bucket refill", wait_time=wait_time)
        time.sleep(wait_time)

        with self._lock:
            self._refill()
            # Another thread may have drained the refill while we slept
            self.tokens = max(self.tokens - tokens, 0.0)
            return True

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.capacity, self.tokens + elapsed * self.rate)
        self.last_refill = now


_buckets: dict[str, TokenBucket] = {}
_buckets_lock = threading.Lock()


def get_bucket(name: str = "default", rate: float = 1.0, capacity: int = 1) -> TokenBucket:
    """Get or create the token bucket registered under ``name``.

    Args:
        name: Bucket name/identifier
        rate: Token refill rate if creating a new bucket
        capacity: Token capacity if creating a new bucket

    Returns:
        TokenBucket instance
    """
    with _buckets_lock:
        if name not in _buckets:
            _buckets[name] = TokenBucket(rate=rate, capacity=capacity)
        return _buckets[name]


def reset_buckets() -> None:
    """Drop all registered buckets. Primarily for testing."""
    with _buckets_lock:
        _buckets.clear()
