import threading
from typing import Protocol
from uuid import UUID

from .models import UserLedger


class ReportRejected(Exception):
    pass


class ReportPolicy(Protocol):
    def check(self, reporter: str, ledger: UserLedger, now: int) -> None:
        """Raise ReportRejected to refuse a peer report before anything is recorded."""
        ...

    def record(self, reporter: str, ledger: UserLedger, now: int) -> None:
        """Account for a report that was accepted; called as the last step of its transaction."""
        ...


class OpenReportPolicy:
    def check(self, reporter: str, ledger: UserLedger, now: int) -> None:
        return None

    def record(self, reporter: str, ledger: UserLedger, now: int) -> None:
        return None


class RateLimitedReportPolicy:
    """Caps peer reports per (reporter, ledger) within one logical epoch.

    Only the newest epoch seen is tracked; counts for earlier epochs are
    dropped as soon as time moves on.
    """

    def __init__(self, max_per_epoch: int):
        if max_per_epoch <= 0:
            raise ValueError("max_per_epoch must be > 0")
        self.max_per_epoch = max_per_epoch
        self._epoch = 0
        self._counts: dict[tuple[str, UUID], int] = {}
        self._lock = threading.Lock()

    @property
    def tracked_pairs(self) -> int:
        return len(self._counts)

    def _roll(self, now: int) -> None:
        if now > self._epoch:
            self._epoch = now
            self._counts.clear()

    def _used(self, reporter: str, ledger: UserLedger, now: int) -> int:
        if now < self._epoch:
            # a stale epoch can only come from a clock that stepped back
            return 0
        return self._counts.get((reporter, ledger.id), 0)

    def check(self, reporter: str, ledger: UserLedger, now: int) -> None:
        with self._lock:
            self._roll(now)
            used = self._used(reporter, ledger, now)
            if used >= self.max_per_epoch:
                raise ReportRejected(
                    f"{reporter} already filed {used} reports against ledger {ledger.id} in epoch {now}"
                )

    def record(self, reporter: str, ledger: UserLedger, now: int) -> None:
        with self._lock:
            self._roll(now)
            if now == self._epoch:
                key = (reporter, ledger.id)
                self._counts[key] = self._counts.get(key, 0) + 1


def policy_from_settings(max_per_epoch: int) -> ReportPolicy:
    if max_per_epoch <= 0:
        return OpenReportPolicy()
    return RateLimitedReportPolicy(max_per_epoch)
