"""State-synchronization tree: rate-limited scheduler and account mirrors."""
from .mirrors import (
    AccountMirror,
    BorrowerMirror,
    MirrorContext,
    PositionPageMirror,
    PriceMirror,
)
from .scheduler import RateLimitedScheduler

__all__ = [
    "AccountMirror",
    "BorrowerMirror",
    "MirrorContext",
    "PositionPageMirror",
    "PriceMirror",
    "RateLimitedScheduler",
]
