from fastapi import APIRouter, HTTPException

from salonbot.core.circuit_breaker import CircuitBreakerRegistry, CircuitState
from salonbot.core.logging_config import get_logger
from salonbot.schemas import CircuitHealthResponse, CircuitStatus

logger = get_logger(__name__)

router = APIRouter()


@router.get("/health")
def health():
    """Basic health check endpoint."""
    return {"status": "healthy"}


@router.get("/health/circuits", response_model=CircuitHealthResponse)
async def circuit_health():
    """
    Breaker state per upstream dependency.

    An open circuit means answers are coming from cache or the static
    catalog until the cooldown passes.
    """
    circuits = []
    for name, breaker in sorted(CircuitBreakerRegistry.all().items()):
        state = await breaker.state()
        record = await breaker.snapshot()
        circuits.append(
            CircuitStatus(
                name=name,
                state=state.value,
                consecutive_failures=record.consecutive_failures,
                last_failure_at=record.last_failure_at,
                retry_at=breaker.retry_at(record) if state is CircuitState.OPEN else None,
            )
        )

    open_circuits = [c.name for c in circuits if c.state == CircuitState.OPEN.value]
    return CircuitHealthResponse(
        status="critical" if open_circuits else "ok",
        circuits=circuits,
        open_circuits=open_circuits,
    )


@router.post("/health/circuits/{name}/reset")
async def reset_circuit(name: str):
    """Close a circuit by hand, e.g. after the upstream was fixed."""
    breaker = CircuitBreakerRegistry.find(name)
    if breaker is None:
        raise HTTPException(status_code=404, detail=f"Unknown circuit: {name}")
    await breaker.reset()
    logger.info("circuit reset manually", circuit=name)
    return {"name": name, "state": CircuitState.CLOSED.value}
