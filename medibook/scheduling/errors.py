from collections.abc import Iterator
from contextlib import contextmanager

from loguru import logger

from medibook.domain.exceptions import InfrastructureError, SchedulingError


@contextmanager
def infrastructure_errors(action: str) -> Iterator[None]:
    """Let scheduling errors through; report anything else as InfrastructureError."""
    try:
        yield
    except SchedulingError:
        raise
    except Exception as exc:
        logger.error("Infrastructure failure while {}: {}", action, exc)
        raise InfrastructureError(f"Failed while {action}: {exc}") from exc
