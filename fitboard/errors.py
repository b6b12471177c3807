"""Domain errors raised by the scoring, leaderboard and reconciliation layers."""


class FitboardError(Exception):
    """Base class for every error this package raises on purpose."""


class InvalidArgument(FitboardError):
    """Caller supplied something we cannot act on (unknown cohort, bad rank...)."""


class NotFound(FitboardError):
    pass


class PermissionDenied(FitboardError):
    pass


class StoreUnavailable(FitboardError):
    """The document store could not complete a single-record operation.

    Every store call is atomic on its own, so nothing needs rolling back when
    this is raised; duplicates left behind are healed by the next reconcile.
    """
