from datetime import timedelta
from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional
import logging

from salonbot.core.kv_store import KeyValueStore, safe_delete, safe_get, safe_put
from salonbot.core.typing import Clock, ensure_utc, utc_now
from salonbot.models.circuit_breaker_state import CircuitBreakerState

logger = logging.getLogger(__name__)

# Type alias for notification callback - return value is ignored
StateChangeCallback = Callable[[str, str, str], Any]  # (name, old_state, new_state)

# Global notification callback - set by application on startup
_notification_callback: Optional[StateChangeCallback] = None


def set_notification_callback(callback: Optional[StateChangeCallback]) -> None:
    """Set the global notification callback for circuit breaker state changes."""
    global _notification_callback
    _notification_callback = callback


def _notify_state_change(name: str, old_state: str, new_state: str) -> None:
    """Notify about state change if callback is registered."""
    if _notification_callback:
        try:
            _notification_callback(name, old_state, new_state)
        except Exception as e:
            logger.error(f"Circuit breaker notification failed: {e}")


class CircuitState(Enum):
    CLOSED = "closed"  # Fetch attempts permitted
    OPEN = "open"  # Fetch attempts suppressed until cooldown passes


@dataclass
class CircuitBreaker:
    """
    Failure-count gate for one upstream dependency.

    The state lives in the shared key-value store, not in this object, so
    every request handler (and every worker process on a shared store) sees
    the same breaker. There is no lock: concurrent record_failure() calls may
    lose an increment, which only delays tripping by one failure.

    Recovery is purely time based: once cooldown_seconds have passed since
    the last failure the record is cleared and fetches are allowed again.
    """

    name: str
    store: KeyValueStore
    failure_threshold: int = 2
    cooldown_seconds: float = 120.0
    store_timeout: float = 0.5
    clock: Clock = field(default=utc_now, repr=False)

    def __post_init__(self):
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if self.cooldown_seconds <= 0:
            raise ValueError("cooldown_seconds must be positive")

    @property
    def key(self) -> str:
        return f"circuit:{self.name}"

    @property
    def _record_ttl(self) -> float:
        # Records outlive the cooldown so is_open() can observe the expiry itself
        return self.cooldown_seconds * 2

    async def _load(self) -> Optional[CircuitBreakerState]:
        raw = await safe_get(self.store, self.key, self.store_timeout)
        if raw is None:
            return None
        try:
            return CircuitBreakerState.model_validate_json(raw)
        except ValueError as e:
            logger.warning(f"Circuit {self.name}: ignoring unreadable state ({e})")
            return None

    async def _save(self, state: CircuitBreakerState) -> bool:
        return await safe_put(
            self.store,
            self.key,
            state.model_dump_json().encode(),
            self._record_ttl,
            self.store_timeout,
        )

    def _cooled_down(self, state: CircuitBreakerState) -> bool:
        if state.last_failure_at is None:
            return True
        elapsed = (self.clock() - ensure_utc(state.last_failure_at)).total_seconds()
        return elapsed > self.cooldown_seconds

    async def snapshot(self) -> CircuitBreakerState:
        """Current persisted record (a zero record when none is stored)."""
        return await self._load() or CircuitBreakerState()

    async def state(self) -> CircuitState:
        return CircuitState.OPEN if await self.is_open() else CircuitState.CLOSED

    async def is_open(self) -> bool:
        state = await self._load()
        if state is None:
            return False

        if self._cooled_down(state):
            was_open = state.consecutive_failures >= self.failure_threshold
            await safe_delete(self.store, self.key, self.store_timeout)
            if was_open:
                logger.info(f"Circuit {self.name}: OPEN -> CLOSED (cooldown elapsed)")
                _notify_state_change(self.name, CircuitState.OPEN.value, CircuitState.CLOSED.value)
            return False

        return state.consecutive_failures >= self.failure_threshold

    async def record_failure(self) -> None:
        state = await self._load()
        if state is None or self._cooled_down(state):
            # A streak interrupted by a full cooldown starts over
            state = CircuitBreakerState()

        state = CircuitBreakerState(
            consecutive_failures=state.consecutive_failures + 1,
            last_failure_at=self.clock(),
        )
        await self._save(state)

        if state.consecutive_failures == self.failure_threshold:
            logger.warning(f"Circuit {self.name}: CLOSED -> OPEN (threshold reached)")
            _notify_state_change(self.name, CircuitState.CLOSED.value, CircuitState.OPEN.value)

    async def reset(self) -> None:
        await safe_delete(self.store, self.key, self.store_timeout)

    async def force_open(self) -> None:
        """Operational override: suppress fetches for one cooldown window."""
        await self._save(
            CircuitBreakerState(
                consecutive_failures=self.failure_threshold,
                last_failure_at=self.clock(),
            )
        )
        logger.warning(f"Circuit {self.name}: forced OPEN")
        _notify_state_change(self.name, CircuitState.CLOSED.value, CircuitState.OPEN.value)

    def retry_at(self, state: CircuitBreakerState) -> Optional[str]:
        """ISO timestamp after which an open circuit will let fetches through."""
        if state.last_failure_at is None or state.consecutive_failures < self.failure_threshold:
            return None
        return (ensure_utc(state.last_failure_at) + timedelta(seconds=self.cooldown_seconds)).isoformat()


class CircuitBreakerRegistry:
    _breakers: Dict[str, CircuitBreaker] = {}

    @classmethod
    def get(cls, name: str, store: KeyValueStore, **kwargs) -> CircuitBreaker:
        if name not in cls._breakers:
            cls._breakers[name] = CircuitBreaker(name=name, store=store, **kwargs)
        return cls._breakers[name]

    @classmethod
    def find(cls, name: str) -> Optional[CircuitBreaker]:
        return cls._breakers.get(name)

    @classmethod
    def all(cls) -> Dict[str, CircuitBreaker]:
        return dict(cls._breakers)

    @classmethod
    def clear(cls) -> None:
        cls._breakers = {}
