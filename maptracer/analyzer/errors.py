"""Exception taxonomy for mapping analysis."""


class AnalysisError(Exception):
    """Base class for faults raised while analyzing a project."""


class ResolutionFailure(AnalysisError):
    """A name or type could not be resolved; only the current branch ends."""


class SeedError(AnalysisError):
    """The requested seed field could not be parsed."""


class AnalysisCancelled(Exception):
    """The analysis was cancelled by the user.

    Not an AnalysisError. Branch handlers re-raise it before any generic
    exception handler runs.
    """
