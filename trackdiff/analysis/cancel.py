"""Caller-owned liveness token for analysis runs."""

import threading

from trackdiff.analysis.errors import AnalysisCancelled


class CancellationToken:
    """Revocable token checked before every side-effecting step of a run.

    Safe to revoke from another thread while a run is in progress.
    """

    def __init__(self) -> None:
        self._revoked = threading.Event()

    def cancel(self) -> None:
        self._revoked.set()

    @property
    def cancelled(self) -> bool:
        return self._revoked.is_set()

    def raise_if_cancelled(self) -> None:
        if self._revoked.is_set():
            raise AnalysisCancelled("Analysis run was cancelled")
