"""
Execution environment for the ledger core.

Provides the three things the core needs from its host:
- the identity of the current caller
- the current logical time
- serialized, all-or-nothing transactions against the touched entities

Storage of ledgers and the registry singleton lives here too, since placing
objects into durable storage is the host's job, not the service's.
"""

import hashlib
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional, Protocol
from uuid import UUID

from pydantic import BaseModel

from .models import SantaRegistry, UserLedger


class Clock(Protocol):
    def now(self) -> int: ...


class LogicalClock:
    def __init__(self, start: int = 0):
        self._epoch = start
        self._lock = threading.Lock()

    def now(self) -> int:
        return self._epoch

    def advance(self, epochs: int = 1) -> int:
        if epochs < 0:
            raise ValueError("Logical time cannot move backwards")
        with self._lock:
            self._epoch += epochs
            return self._epoch


class EpochClock:
    """Wall-clock epochs of fixed length, counted from ``genesis`` (the Unix epoch by default)."""

    def __init__(self, epoch_duration_seconds: int = 86400, genesis: float = 0.0):
        if epoch_duration_seconds <= 0:
            raise ValueError("epoch_duration_seconds must be > 0")
        self.epoch_duration_seconds = epoch_duration_seconds
        self.genesis = genesis
        self._last = 0

    def now(self) -> int:
        epoch = int((time.time() - self.genesis) // self.epoch_duration_seconds)
        # monotonic even if the wall clock steps back
        self._last = max(self._last, epoch)
        return self._last


@dataclass(frozen=True)
class TxContext:
    sender: str
    epoch: int
    digest: bytes


class StorageConflict(Exception):
    pass


def _snapshot(entities: tuple[BaseModel, ...]) -> list[tuple[BaseModel, BaseModel]]:
    return [(entity, entity.model_copy(deep=True)) for entity in entities]


def _restore(saved: list[tuple[BaseModel, BaseModel]]) -> None:
    for entity, copy in saved:
        for name in type(entity).model_fields:
            setattr(entity, name, getattr(copy, name))


class InMemoryStorage:
    def __init__(self):
        self.ledgers: dict[UUID, UserLedger] = {}
        self.ledgers_by_owner: dict[str, list[UUID]] = {}
        self.registry: Optional[SantaRegistry] = None

    def put_ledger(self, ledger: UserLedger) -> None:
        if ledger.id not in self.ledgers:
            self.ledgers_by_owner.setdefault(ledger.owner, []).append(ledger.id)
        self.ledgers[ledger.id] = ledger

    def get_ledger(self, ledger_id: UUID) -> Optional[UserLedger]:
        return self.ledgers.get(ledger_id)

    def ledgers_for(self, owner: str) -> list[UserLedger]:
        return [self.ledgers[i] for i in self.ledgers_by_owner.get(owner, [])]

    def put_registry(self, registry: SantaRegistry) -> None:
        if self.registry is not None:
            raise StorageConflict(f"Registry {self.registry.id} already exists")
        self.registry = registry


class ExecutionEnvironment:
    def __init__(self, clock: Optional[Clock] = None, storage: Optional[InMemoryStorage] = None):
        self.clock = clock if clock is not None else LogicalClock()
        self.storage = storage if storage is not None else InMemoryStorage()
        self._lock = threading.RLock()
        self._sequence = 0
        self._saved: list[list[tuple[BaseModel, BaseModel]]] = []

    @contextmanager
    def transaction(self, caller: str, *entities: BaseModel) -> Iterator[TxContext]:
        """Run one operation as a serialized unit.

        Touched entities are restored to their prior state if the body raises.
        """
        if not caller:
            raise ValueError("A transaction needs a caller identity")
        with self._lock:
            self._sequence += 1
            ctx_epoch = self.clock.now()
            ctx = TxContext(
                sender=caller,
                epoch=ctx_epoch,
                digest=hashlib.sha256(f"{self._sequence}:{caller}:{ctx_epoch}".encode()).digest(),
            )
            self._saved.append(_snapshot(entities))
            try:
                yield ctx
            except Exception:
                _restore(self._saved[-1])
                raise
            finally:
                self._saved.pop()

    def touch(self, *entities: BaseModel) -> None:
        """Enlist entities loaded inside the open transaction for rollback."""
        if not self._saved:
            raise RuntimeError("touch() called outside a transaction")
        self._saved[-1].extend(_snapshot(entities))

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._lock:
            yield
