"""Error taxonomy for the reflexion loop."""


class ReflexionError(Exception):
    """Base class for every error raised by the reflexion package."""


class ReflexionConfigError(ReflexionError):
    """Malformed initial state or run options. Surfaces to the caller."""


class InsufficientDataError(ReflexionError):
    """Not enough rows to fit or evaluate a model."""


class DimensionMismatchError(ReflexionError):
    """Feature names, input widths or coefficient counts disagree."""


class ScoringError(ReflexionError):
    """The entity scorer failed or left entities unscored."""


class ProposalError(ReflexionError):
    """The feature proposer failed to return a usable feature."""


class DuplicateFeatureNameError(ProposalError):
    """A proposed feature reuses the name of an active or rejected feature."""


# Errors that abandon a single iteration without stopping the run
ITERATION_ERRORS = (
    InsufficientDataError,
    ScoringError,
    ProposalError,
)
