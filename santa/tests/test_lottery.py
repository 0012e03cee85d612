"""
Unit Tests for the reward pool and lottery

Tests cover:
1. Registry initialization and pool funding
2. Win/loss decisions driven by the draw
3. Reward amounts
4. Silent no-payout on an underfunded pool
5. Win-rate convergence and currency conservation
"""

import pytest
from uuid import uuid4

from santa import balance
from santa.environment import ExecutionEnvironment
from santa.events import InMemoryEventSink
from santa.models import RewardClaimed
from santa.randomness import SeededRandomness
from santa.service import (
    SantaLedgerService,
    NotAuthorized,
    InvalidDeedType,
    RegistryAlreadyInitialized,
    RegistryNotInitialized,
    reward_for,
)


# Test constants
ADMIN = "santa"
OWNER = "alice"
PEER = "bob"


class ScriptedRandomness:
    """Hands out predetermined rolls and remembers every draw."""

    def __init__(self, *rolls):
        self.rolls = list(rolls)
        self.draws = []

    def new_generator(self, ctx):
        return self

    def draw_uniform(self, low, high):
        roll = self.rolls.pop(0)
        self.draws.append((low, high, roll))
        return roll


class ExplodingRandomness:
    def new_generator(self, ctx):
        return self

    def draw_uniform(self, low, high):
        raise RuntimeError("randomness service unavailable")


def make_service(randomness):
    events = InMemoryEventSink()
    service = SantaLedgerService(environment=ExecutionEnvironment(), randomness=randomness, events=events)
    return service, events


def seed_deeds(service, ledger, good, bad):
    for i in range(good):
        service.record_self_deed(ledger.owner, ledger.id, f"good {i}", True)
    for i in range(bad):
        service.record_self_deed(ledger.owner, ledger.id, f"bad {i}", False)


def funded_registry(service, amount):
    registry = service.initialize(ADMIN)
    service.fund_reward_pool(ADMIN, registry.id, balance.mint(amount))
    return registry


def claimed_events(events):
    return [r.event for r in events.recent(limit=10_000) if isinstance(r.event, RewardClaimed)]


class TestRegistry:
    """Tests for registry initialization and funding."""

    def test_initialize_sets_admin(self):
        service, _ = make_service(ScriptedRandomness())

        registry = service.initialize(ADMIN)

        assert registry.admin == ADMIN
        assert registry.reward_pool.value == 0
        assert service.get_registry() == registry

    def test_second_initialize_refused(self):
        service, _ = make_service(ScriptedRandomness())
        registry = service.initialize(ADMIN)

        with pytest.raises(RegistryAlreadyInitialized):
            service.initialize(PEER)

        assert service.get_registry() == registry
        assert service.get_registry().admin == ADMIN

    def test_registry_missing(self):
        service, _ = make_service(ScriptedRandomness())

        with pytest.raises(RegistryNotInitialized):
            service.get_registry()

    def test_admin_funds_pool(self):
        """Funding adds exactly the payment value and consumes the coin."""
        service, _ = make_service(ScriptedRandomness())
        registry = service.initialize(ADMIN)
        payment = balance.mint(250_000)

        service.fund_reward_pool(ADMIN, registry.id, payment)
        service.fund_reward_pool(ADMIN, registry.id, balance.mint(50_000))

        assert service.get_reward_pool() == 300_000
        assert payment.consumed

    def test_non_admin_cannot_fund(self):
        service, _ = make_service(ScriptedRandomness())
        registry = service.initialize(ADMIN)
        payment = balance.mint(1000)

        with pytest.raises(NotAuthorized):
            service.fund_reward_pool(OWNER, registry.id, payment)

        assert service.get_reward_pool() == 0
        # the payment stays with the caller
        assert payment.value == 1000
        assert not payment.consumed


class TestClaimPreconditions:
    """Tests for who may claim and when."""

    def test_claim_by_non_owner(self):
        randomness = ScriptedRandomness(0)
        service, _ = make_service(randomness)
        registry = funded_registry(service, 1_000_000)
        ledger = service.open_ledger(OWNER)
        seed_deeds(service, ledger, 5, 0)

        with pytest.raises(NotAuthorized):
            service.claim_santa_reward(PEER, ledger.id, registry.id)

        assert randomness.draws == []

    def test_claim_without_deeds(self):
        randomness = ScriptedRandomness(0)
        service, _ = make_service(randomness)
        registry = funded_registry(service, 1_000_000)
        ledger = service.open_ledger(OWNER)

        with pytest.raises(InvalidDeedType):
            service.claim_santa_reward(OWNER, ledger.id, registry.id)

        assert randomness.draws == []
        assert service.get_reward_pool() == 1_000_000

    def test_claim_against_unknown_registry(self):
        randomness = ScriptedRandomness(0)
        service, _ = make_service(randomness)
        funded_registry(service, 1_000_000)
        ledger = service.open_ledger(OWNER)
        seed_deeds(service, ledger, 5, 0)

        with pytest.raises(RegistryNotInitialized):
            service.claim_santa_reward(OWNER, ledger.id, uuid4())

        assert randomness.draws == []
        assert service.get_reward_balance(ledger.id) == 0


class TestLotteryOutcome:
    """Tests for the win condition and payouts."""

    def test_draw_range_is_total_deeds(self):
        randomness = ScriptedRandomness(0)
        service, _ = make_service(randomness)
        registry = funded_registry(service, 1_000_000)
        ledger = service.open_ledger(OWNER)
        seed_deeds(service, ledger, 8, 2)

        service.claim_santa_reward(OWNER, ledger.id, registry.id)

        assert randomness.draws == [(0, 10, 0)]

    def test_roll_below_good_count_wins(self):
        """With 8 good of 10, rolls 0-7 win and 8-9 lose."""
        randomness = ScriptedRandomness(7, 8, 9)
        service, events = make_service(randomness)
        registry = funded_registry(service, 1_000_000)
        ledger = service.open_ledger(OWNER)
        seed_deeds(service, ledger, 8, 2)

        assert service.claim_santa_reward(OWNER, ledger.id, registry.id) == 80_000
        assert service.claim_santa_reward(OWNER, ledger.id, registry.id) == 0
        assert service.claim_santa_reward(OWNER, ledger.id, registry.id) == 0

        assert service.get_reward_balance(ledger.id) == 80_000
        assert service.get_reward_pool() == 920_000
        assert claimed_events(events) == [
            RewardClaimed(user=OWNER, ledger_id=ledger.id, amount=80_000, good_count=8, bad_count=2)
        ]

    def test_full_ratio_pays_100000(self):
        service, _ = make_service(ScriptedRandomness(9))
        registry = funded_registry(service, 1_000_000)
        ledger = service.open_ledger(OWNER)
        seed_deeds(service, ledger, 10, 0)

        assert service.claim_santa_reward(OWNER, ledger.id, registry.id) == 100_000
        assert service.get_reward_balance(ledger.id) == 100_000

    def test_half_ratio_pays_50000(self):
        service, _ = make_service(ScriptedRandomness(4))
        registry = funded_registry(service, 1_000_000)
        ledger = service.open_ledger(OWNER)
        seed_deeds(service, ledger, 5, 5)

        assert service.claim_santa_reward(OWNER, ledger.id, registry.id) == 50_000

    def test_all_bad_never_wins(self):
        service, _ = make_service(ScriptedRandomness(0))
        registry = funded_registry(service, 1_000_000)
        ledger = service.open_ledger(OWNER)
        seed_deeds(service, ledger, 0, 3)

        assert service.claim_santa_reward(OWNER, ledger.id, registry.id) == 0
        assert service.get_reward_pool() == 1_000_000

    def test_reward_amount_truncates(self):
        """2 of 3 is 66%, so 66000 rather than 66666."""
        assert reward_for(2, 3) == 66_000
        assert reward_for(1, 3) == 33_000
        assert reward_for(10, 10) == 100_000
        assert reward_for(1, 200) == 0

    def test_loss_changes_nothing(self):
        service, events = make_service(ScriptedRandomness(3))
        registry = funded_registry(service, 500_000)
        ledger = service.open_ledger(OWNER)
        seed_deeds(service, ledger, 3, 1)
        deeds_before = service.get_ledger(ledger.id).deeds

        assert service.claim_santa_reward(OWNER, ledger.id, registry.id) == 0

        assert service.get_ledger(ledger.id).deeds == deeds_before
        assert service.get_reward_balance(ledger.id) == 0
        assert service.get_reward_pool() == 500_000
        assert claimed_events(events) == []


class TestUnderfundedPool:
    """Tests for winning against a pool that cannot pay."""

    def test_insolvent_pool_pays_nothing_silently(self):
        """A winning draw against a short pool is a quiet no-op that still uses the draw."""
        randomness = ScriptedRandomness(0)
        service, events = make_service(randomness)
        registry = funded_registry(service, 79_999)
        ledger = service.open_ledger(OWNER)
        seed_deeds(service, ledger, 8, 2)

        credited = service.claim_santa_reward(OWNER, ledger.id, registry.id)

        assert credited == 0
        assert len(randomness.draws) == 1
        assert service.get_reward_pool() == 79_999
        assert service.get_reward_balance(ledger.id) == 0
        assert claimed_events(events) == []

    def test_exactly_funded_pool_pays(self):
        service, _ = make_service(ScriptedRandomness(0))
        registry = funded_registry(service, 80_000)
        ledger = service.open_ledger(OWNER)
        seed_deeds(service, ledger, 8, 2)

        assert service.claim_santa_reward(OWNER, ledger.id, registry.id) == 80_000
        assert service.get_reward_pool() == 0

    def test_failed_draw_rolls_back(self):
        """If the draw itself fails, the claim leaves no trace."""
        service, events = make_service(ExplodingRandomness())
        registry = funded_registry(service, 1_000_000)
        ledger = service.open_ledger(OWNER)
        seed_deeds(service, ledger, 8, 2)

        with pytest.raises(RuntimeError):
            service.claim_santa_reward(OWNER, ledger.id, registry.id)

        assert service.get_reward_pool() == 1_000_000
        assert service.get_reward_balance(ledger.id) == 0
        assert service.get_total_deeds(ledger.id) == 10


class TestLotteryStatistics:
    """Tests over many claims with real (seeded) randomness."""

    def test_win_rate_converges_to_good_ratio(self):
        trials = 5000
        service, _ = make_service(SeededRandomness(seed=20241224))
        registry = funded_registry(service, trials * 80_000)
        ledger = service.open_ledger(OWNER)
        seed_deeds(service, ledger, 8, 2)

        wins = sum(1 for _ in range(trials) if service.claim_santa_reward(OWNER, ledger.id, registry.id) > 0)

        assert 0.77 <= wins / trials <= 0.83
        assert service.get_reward_balance(ledger.id) == wins * 80_000

    def test_currency_is_conserved(self):
        """Pool + balances + withdrawals always equals what was funded."""
        service, _ = make_service(SeededRandomness(seed=7))
        registry = service.initialize(ADMIN)
        alice = service.open_ledger(OWNER)
        bob = service.open_ledger(PEER)
        seed_deeds(service, alice, 6, 4)
        seed_deeds(service, bob, 9, 1)

        funded = 0
        withdrawn = 0
        for round_no in range(200):
            if round_no % 25 == 0:
                service.fund_reward_pool(ADMIN, registry.id, balance.mint(400_000))
                funded += 400_000
            service.claim_santa_reward(OWNER, alice.id, registry.id)
            service.claim_santa_reward(PEER, bob.id, registry.id)
            if round_no % 10 == 0:
                amount = service.get_reward_balance(alice.id) // 2
                withdrawn += service.withdraw_rewards(OWNER, alice.id, amount).value

            total = (
                service.get_reward_pool()
                + service.get_reward_balance(alice.id)
                + service.get_reward_balance(bob.id)
                + withdrawn
            )
            assert total == funded


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
