"""Suppression of repeated status notifications.

The same upstream change can reach the service twice: once through a direct
API call and once through the event feed. :class:`DuplicateFilter` collapses
the second delivery when it matches the latest history entry closely enough.

Reason comparison is deliberately loose (see :func:`reasons_match`): the
ticketing system re-words reasons between its API and its events. This makes
false positives possible, e.g. ``"fixed"`` matches ``"not fixed"`` inside the
window.
"""

from __future__ import annotations

from datetime import timedelta

from .models import StatusRecord, UpdateCandidate

DEFAULT_DUPLICATE_WINDOW = timedelta(seconds=5)


def reasons_match(recorded: str | None, candidate: str | None) -> bool:
    """Return whether two reason strings describe the same change.

    Equal strings match, as do strings where one is a non-empty substring of
    the other. A candidate without a reason matches any recorded reason.
    """

    if candidate is None:
        return True
    recorded = recorded or ""
    if recorded == candidate:
        return True
    if not recorded or not candidate:
        return False
    return candidate in recorded or recorded in candidate


class DuplicateFilter:
    """Decide whether an update repeats the most recent history entry."""

    def __init__(self, window: timedelta = DEFAULT_DUPLICATE_WINDOW) -> None:
        self._window = window

    @property
    def window(self) -> timedelta:
        return self._window

    def is_duplicate(
        self,
        record: StatusRecord,
        candidate: UpdateCandidate,
        *,
        match_actor: bool = True,
    ) -> bool:
        last = record.latest_entry
        if last is None:
            return False

        elapsed = max(candidate.now - last.timestamp, timedelta(0))
        if elapsed >= self._window:
            return False
        if last.status != candidate.status:
            return False
        if match_actor and last.updated_by != candidate.updated_by:
            return False
        return reasons_match(last.reason, candidate.reason)
