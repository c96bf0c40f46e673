class HarvestError(Exception):
    """Base error for job control operations."""


class AlreadyRunning(HarvestError):
    """Raised when a job is started while another one is active."""


class NoActiveJob(HarvestError):
    """Raised when stop is requested with no job running."""


class TargetNotFound(HarvestError):
    """Raised when the requested company does not exist."""


class InvalidDateFilter(HarvestError, ValueError):
    """Raised for a date filter other than all, week or twoWeeks."""


class JobCancelled(HarvestError):
    """Raised at a checkpoint after a stop was requested."""
