"""Error handling utilities."""


class TaskTrackerError(Exception):
    """Base exception for the task tracker backend."""
    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(TaskTrackerError):
    """Task or step id could not be resolved."""
    status_code = 404


class ValidationError(TaskTrackerError):
    """Request input failed validation (bad progress value, empty reason/comment)."""
    status_code = 400


class InvalidStateError(TaskTrackerError):
    """Operation conflicts with the current state (cross-task step, concurrent edit)."""
    status_code = 409


class SupabaseError(TaskTrackerError):
    """Supabase operation error."""
    pass
