"""Exception taxonomy for the sync engine.

Only RunConcurrencyError, RunInitializationError and the lifecycle API
errors ever reach a trigger caller. Everything else is caught by the
orchestrator and recorded in the run log as a human-readable string.
"""


class SyncError(Exception):
    """Base class for all engine errors."""


class AdapterError(SyncError):
    """A source was unreachable, rejected our credentials, or returned garbage."""

    def __init__(self, source: str, message: str):
        self.source = source
        self.message = message
        super().__init__(f"{source}: {message}")


class RecordValidationError(SyncError):
    """A single record is malformed; only that record is skipped."""


class MatchAmbiguityError(RecordValidationError):
    """More than one stored candidate satisfied the deciding match rule."""

    def __init__(self, entity: str, rule: str, candidate_ids: list[str]):
        self.entity = entity
        self.rule = rule
        self.candidate_ids = candidate_ids
        super().__init__(
            f"ambiguous {entity} match by {rule}: {', '.join(candidate_ids)}"
        )


class StoreWriteError(SyncError):
    """The store rejected a write as a whole."""


class RunConcurrencyError(SyncError):
    """A run for the same metro is already in progress."""

    def __init__(self, metro: str):
        self.metro = metro
        super().__init__(f"run already in progress for metro '{metro}'")


class RunInitializationError(SyncError):
    """The run could not start at all, e.g. no active metros."""


class InvalidTransitionError(SyncError):
    """A lifecycle action is not allowed from the page's current status."""


class PageNotFoundError(SyncError):
    """No social page with the given id is registered."""
