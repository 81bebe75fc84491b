import uuid
from contextvars import ContextVar
from typing import Optional

run_id_context: ContextVar[Optional[str]] = ContextVar("run_id", default=None)


def get_run_id() -> Optional[str]:
    """Get the current scheduler run ID from context."""
    return run_id_context.get()


def set_run_id(run_id: str) -> None:
    """Set the scheduler run ID in context."""
    run_id_context.set(run_id)


def new_run_id(prefix: str) -> str:
    """Create a run ID such as ``reminder_tick_1f2e3d4c``."""
    return f"{prefix}_{uuid.uuid4().hex[:8]}"
