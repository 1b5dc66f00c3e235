"""Exception hierarchy for the achievement engine."""

from __future__ import annotations


class WatchBadgesError(Exception):
    """Base class for all engine errors."""


class StoreError(WatchBadgesError):
    """A document store operation failed."""


class StoreUnavailableError(StoreError):
    """The remote store rejected the operation or could not be reached."""


class TransactionConflictError(StoreError):
    """A transaction kept conflicting with concurrent writers and was given up."""

    def __init__(self, path: str, attempts: int) -> None:
        super().__init__(f"Transaction on {path!r} gave up after {attempts} attempts")
        self.path = path
        self.attempts = attempts


class CatalogError(WatchBadgesError):
    """The badge catalog is malformed."""


class CatalogRevisionError(CatalogError):
    """A shipped badge id had its requirement changed in place."""

    def __init__(self, badge_ids: list[str]) -> None:
        super().__init__(
            "Requirement changed for existing badge ids (ship a new id instead): " + ", ".join(badge_ids)
        )
        self.badge_ids = badge_ids
