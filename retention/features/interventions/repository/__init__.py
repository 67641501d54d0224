from .postgres import PostgresInterventionStore
from .store import InterventionStore

__all__ = ["InterventionStore", "PostgresInterventionStore"]
