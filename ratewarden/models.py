"""Data models shared by strategies, storage engines and the dispatcher."""

from dataclasses import dataclass


@dataclass(frozen=True)
class LimitResult:
    """Outcome of a single strategy check.

    Attributes:
        is_allowed: Whether the request may proceed.
        remaining: Hits or whole tokens left for the entity, never negative.
        reset: Milliseconds reported by the strategy. Fixed window reports its
            configured window length; token bucket reports the wait until the
            next whole token (0 when one is available).
    """
    is_allowed: bool
    remaining: int
    reset: int


@dataclass
class TokenBucketState:
    """Per-key token bucket state.

    Attributes:
        tokens: Tokens currently in the bucket, within [0, bucket_size].
        last_refill: Epoch milliseconds of the last refill.
    """
    tokens: float
    last_refill: int

    def to_dict(self) -> dict:
        """Convert to the wire form stored by remote backends."""
        return {"tokens": self.tokens, "lastRefill": self.last_refill}

    @classmethod
    def from_dict(cls, data: dict) -> "TokenBucketState":
        """Create from the wire form."""
        return cls(
            tokens=float(data["tokens"]),
            last_refill=int(data["lastRefill"]),
        )
