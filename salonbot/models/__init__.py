from .kv_entry import KeyValueEntry
from .circuit_breaker_state import CircuitBreakerState
from .cache_entry import CacheEntry
from .outcome import FetchOutcome, Provenance

__all__ = [
    "KeyValueEntry",
    "CircuitBreakerState",
    "CacheEntry",
    "FetchOutcome",
    "Provenance",
]
