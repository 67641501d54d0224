class InterventionError(Exception):
    """Base error for intervention workflow operations."""

    def __init__(self, message: str, intervention_id: str | None = None):
        super().__init__(message)
        self.intervention_id = intervention_id


class InterventionNotFoundError(InterventionError):
    pass


class InterventionStateError(InterventionError):
    """The intervention is not in the status the operation requires."""

    def __init__(self, message: str, intervention_id: str | None = None, status: str | None = None):
        super().__init__(message, intervention_id)
        self.status = status
