from .engine import InterventionEngine
from .exceptions import InterventionError, InterventionNotFoundError, InterventionStateError

__all__ = [
    "InterventionEngine",
    "InterventionError",
    "InterventionNotFoundError",
    "InterventionStateError",
]
