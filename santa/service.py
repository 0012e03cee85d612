from typing import Optional
from uuid import UUID

import structlog

from . import balance
from .balance import Coin
from .environment import ExecutionEnvironment, StorageConflict, TxContext
from .events import EventSink, InMemoryEventSink
from .models import (
    Deed,
    DeedCounts,
    DeedRecorded,
    LedgerEvent,
    LedgerView,
    RegistryView,
    RewardClaimed,
    SantaRegistry,
    UserLedger,
)
from .policy import OpenReportPolicy, ReportPolicy, ReportRejected
from .randomness import RandomnessSource, SystemRandomness

log = structlog.get_logger(__name__)

# good_count / total as a fixed-point percentage with two implied decimals
PROBABILITY_SCALE = 10000
# reward units paid per whole percentage point of good deeds
REWARD_PER_PERCENT = 1000


class LedgerServiceError(Exception):
    pass


class NotAuthorized(LedgerServiceError):
    pass


class InvalidDeedType(LedgerServiceError):
    pass


class InsufficientBalance(LedgerServiceError):
    pass


class LedgerNotFoundError(LedgerServiceError):
    pass


class InvalidLedgerError(LedgerServiceError):
    pass


class RegistryNotInitialized(LedgerServiceError):
    pass


class RegistryAlreadyInitialized(LedgerServiceError):
    pass


class ReportRejectedError(LedgerServiceError):
    pass


def good_probability(good_count: int, total: int) -> int:
    if total == 0:
        return 0
    return good_count * PROBABILITY_SCALE // total


def reward_for(good_count: int, total: int) -> int:
    good_percentage = good_count * 100 // total
    return good_percentage * REWARD_PER_PERCENT


class SantaLedgerService:
    """Operations over stored ledgers and the registry singleton.

    Entities are addressed by id and loaded inside each transaction. Anything
    handed back to callers is a copy or a view, never the stored object.
    """

    def __init__(
        self,
        environment: Optional[ExecutionEnvironment] = None,
        randomness: Optional[RandomnessSource] = None,
        events: Optional[EventSink] = None,
        report_policy: Optional[ReportPolicy] = None,
    ):
        self.environment = environment if environment is not None else ExecutionEnvironment()
        self.events = events if events is not None else InMemoryEventSink()
        self.report_policy = report_policy if report_policy is not None else OpenReportPolicy()
        # Only claim_santa_reward may reach this.
        self._randomness = randomness if randomness is not None else SystemRandomness()

    # ----- ledgers -----

    def create_ledger(self, caller: str) -> UserLedger:
        with self.environment.transaction(caller) as ctx:
            ledger = UserLedger(owner=ctx.sender)
        log.info("ledger_created", ledger_id=str(ledger.id), owner=ledger.owner)
        return ledger

    def store_ledger(self, caller: str, ledger: UserLedger) -> None:
        with self.environment.transaction(caller) as ctx:
            self._require_owner(ctx, ledger)
            if self.environment.storage.get_ledger(ledger.id) is not None:
                raise InvalidLedgerError(f"Ledger {ledger.id} is already stored")
            if ledger.deeds or ledger.good_count or ledger.bad_count or balance.value(ledger.reward_balance):
                raise InvalidLedgerError(f"Ledger {ledger.id} must be empty when first stored")
            self.environment.storage.put_ledger(ledger.model_copy(deep=True))

    def open_ledger(self, caller: str) -> UserLedger:
        ledger = self.create_ledger(caller)
        self.store_ledger(caller, ledger)
        return ledger

    def get_ledger(self, ledger_id: UUID) -> UserLedger:
        with self.environment.read():
            return self._ledger(ledger_id).model_copy(deep=True)

    def list_ledgers(self, owner: str) -> list[UserLedger]:
        with self.environment.read():
            return [ledger.model_copy(deep=True) for ledger in self.environment.storage.ledgers_for(owner)]

    def ledger_view(self, ledger_id: UUID) -> LedgerView:
        with self.environment.read():
            return self._view(self._ledger(ledger_id))

    def list_ledger_views(self, owner: str) -> list[LedgerView]:
        with self.environment.read():
            return [self._view(ledger) for ledger in self.environment.storage.ledgers_for(owner)]

    # ----- deeds -----

    def record_self_deed(self, caller: str, ledger_id: UUID, description: str, is_good: bool) -> None:
        with self.environment.transaction(caller) as ctx:
            ledger = self._ledger_for_update(ledger_id)
            self._require_owner(ctx, ledger)
            event = self._append_deed(ctx, ledger, description, is_good)
        self._emit(event)

    def report_deed(self, caller: str, ledger_id: UUID, description: str, is_good: bool) -> None:
        with self.environment.transaction(caller) as ctx:
            ledger = self._ledger_for_update(ledger_id)
            try:
                self.report_policy.check(ctx.sender, ledger, ctx.epoch)
            except ReportRejected as e:
                log.warning("report_rejected", ledger_id=str(ledger.id), reporter=ctx.sender)
                raise ReportRejectedError(str(e)) from e
            event = self._append_deed(ctx, ledger, description, is_good)
            self.report_policy.record(ctx.sender, ledger, ctx.epoch)
        self._emit(event)

    def _append_deed(self, ctx: TxContext, ledger: UserLedger, description: str, is_good: bool) -> DeedRecorded:
        ledger.deeds.append(Deed(
            description=description,
            is_good=is_good,
            reported_by=ctx.sender,
            timestamp=ctx.epoch,
        ))
        if is_good:
            ledger.good_count += 1
        else:
            ledger.bad_count += 1

        log.info(
            "deed_recorded",
            ledger_id=str(ledger.id),
            owner=ledger.owner,
            reporter=ctx.sender,
            is_good=is_good,
            epoch=ctx.epoch,
        )
        return DeedRecorded(
            user=ledger.owner,
            ledger_id=ledger.id,
            description=description,
            is_good=is_good,
            reporter=ctx.sender,
        )

    # ----- queries -----

    def get_deed_counts(self, ledger_id: UUID) -> DeedCounts:
        with self.environment.read():
            ledger = self._ledger(ledger_id)
            return DeedCounts(good_count=ledger.good_count, bad_count=ledger.bad_count)

    def get_total_deeds(self, ledger_id: UUID) -> int:
        with self.environment.read():
            return self._ledger(ledger_id).total_deeds

    def get_reward_balance(self, ledger_id: UUID) -> int:
        with self.environment.read():
            return balance.value(self._ledger(ledger_id).reward_balance)

    def calculate_good_probability(self, ledger_id: UUID) -> int:
        with self.environment.read():
            ledger = self._ledger(ledger_id)
            return good_probability(ledger.good_count, ledger.total_deeds)

    # ----- balances -----

    def withdraw_rewards(self, caller: str, ledger_id: UUID, amount: int) -> Coin:
        if amount < 0:
            raise ValueError("amount must be >= 0")

        with self.environment.transaction(caller) as ctx:
            ledger = self._ledger_for_update(ledger_id)
            self._require_owner(ctx, ledger)
            available = balance.value(ledger.reward_balance)
            if available < amount:
                raise InsufficientBalance(f"Cannot withdraw {amount}, reward balance is {available}")
            coin = balance.take(ledger.reward_balance, amount)

        log.info("rewards_withdrawn", ledger_id=str(ledger_id), owner=ctx.sender, amount=amount)
        return coin

    # ----- registry -----

    def initialize(self, caller: str) -> SantaRegistry:
        with self.environment.transaction(caller) as ctx:
            registry = SantaRegistry(admin=ctx.sender)
            try:
                self.environment.storage.put_registry(registry)
            except StorageConflict as e:
                raise RegistryAlreadyInitialized(str(e)) from e
            result = registry.model_copy(deep=True)
        log.info("registry_initialized", registry_id=str(registry.id), admin=registry.admin)
        return result

    def get_registry(self) -> SantaRegistry:
        with self.environment.read():
            return self._registry().model_copy(deep=True)

    def registry_view(self) -> RegistryView:
        with self.environment.read():
            registry = self._registry()
            return RegistryView(id=registry.id, admin=registry.admin, reward_pool=balance.value(registry.reward_pool))

    def get_reward_pool(self) -> int:
        with self.environment.read():
            return balance.value(self._registry().reward_pool)

    def fund_reward_pool(self, caller: str, registry_id: UUID, payment: Coin) -> None:
        with self.environment.transaction(caller) as ctx:
            registry = self._registry_for_update(registry_id)
            if ctx.sender != registry.admin:
                raise NotAuthorized(f"{ctx.sender} is not the registry admin")
            amount = payment.value
            pool = balance.join(registry.reward_pool, payment)
        log.info("pool_funded", registry_id=str(registry_id), amount=amount, pool=pool)

    # ----- lottery -----

    def claim_santa_reward(self, caller: str, ledger_id: UUID, registry_id: UUID) -> int:
        """Run the reward lottery for a ledger and settle it in one step.

        The draw happens inside the committed transaction and is never exposed
        on its own. Returns the amount credited, which is 0 both when the draw
        loses and when a winning draw meets an underfunded pool.
        """
        event = None
        credited = 0

        with self.environment.transaction(caller) as ctx:
            ledger = self._ledger_for_update(ledger_id)
            registry = self._registry_for_update(registry_id)
            self._require_owner(ctx, ledger)

            total = ledger.total_deeds
            if total == 0:
                raise InvalidDeedType("No deeds recorded; the good-deed ratio is undefined")

            generator = self._randomness.new_generator(ctx)
            roll = generator.draw_uniform(0, total)

            if roll < ledger.good_count:
                reward_amount = reward_for(ledger.good_count, total)
                if balance.value(registry.reward_pool) >= reward_amount:
                    payout = balance.take(registry.reward_pool, reward_amount)
                    balance.join(ledger.reward_balance, payout)
                    credited = reward_amount
                    event = RewardClaimed(
                        user=ledger.owner,
                        ledger_id=ledger.id,
                        amount=reward_amount,
                        good_count=ledger.good_count,
                        bad_count=ledger.bad_count,
                    )
                else:
                    # No payout and no error for the caller when the pool runs dry.
                    log.warning(
                        "reward_pool_insufficient",
                        ledger_id=str(ledger.id),
                        registry_id=str(registry.id),
                        reward_amount=reward_amount,
                    )

        log.info("reward_claim_settled", ledger_id=str(ledger_id), owner=ctx.sender, credited=credited)
        if event is not None:
            self._emit(event)
        return credited

    # ----- helpers -----

    def _emit(self, event: LedgerEvent) -> None:
        # the state change is already committed; a sink failure must not surface
        try:
            self.events.emit(event)
        except Exception:
            log.exception("event_emit_failed", kind=event.kind, ledger_id=str(event.ledger_id))

    def _ledger(self, ledger_id: UUID) -> UserLedger:
        ledger = self.environment.storage.get_ledger(ledger_id)
        if ledger is None:
            raise LedgerNotFoundError(f"Ledger {ledger_id} not found")
        return ledger

    def _ledger_for_update(self, ledger_id: UUID) -> UserLedger:
        ledger = self._ledger(ledger_id)
        self.environment.touch(ledger)
        return ledger

    def _registry(self) -> SantaRegistry:
        registry = self.environment.storage.registry
        if registry is None:
            raise RegistryNotInitialized("Santa registry has not been initialized")
        return registry

    def _registry_for_update(self, registry_id: UUID) -> SantaRegistry:
        registry = self._registry()
        if registry.id != registry_id:
            raise RegistryNotInitialized(f"Registry {registry_id} not found")
        self.environment.touch(registry)
        return registry

    def _view(self, ledger: UserLedger) -> LedgerView:
        return LedgerView.from_ledger(ledger, good_probability(ledger.good_count, ledger.total_deeds))

    @staticmethod
    def _require_owner(ctx: TxContext, ledger: UserLedger) -> None:
        if ctx.sender != ledger.owner:
            raise NotAuthorized(f"{ctx.sender} does not own ledger {ledger.id}")
