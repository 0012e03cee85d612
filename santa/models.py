from datetime import datetime
from typing import Literal, Optional, Union
from uuid import UUID, uuid4
from pydantic import BaseModel, Field, ConfigDict

from .balance import Balance, zero


class Deed(BaseModel):
    description: str
    is_good: bool
    reported_by: str
    timestamp: int

    model_config = ConfigDict(frozen=True)


class UserLedger(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    owner: str
    deeds: list[Deed] = Field(default_factory=list)
    good_count: int = 0
    bad_count: int = 0
    reward_balance: Balance = Field(default_factory=zero)

    @property
    def total_deeds(self) -> int:
        return self.good_count + self.bad_count


class SantaRegistry(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    admin: str
    reward_pool: Balance = Field(default_factory=zero)


class DeedRecorded(BaseModel):
    kind: Literal["DeedRecorded"] = "DeedRecorded"
    user: str
    ledger_id: UUID
    description: str
    is_good: bool
    reporter: str


class RewardClaimed(BaseModel):
    kind: Literal["RewardClaimed"] = "RewardClaimed"
    user: str
    ledger_id: UUID
    amount: int
    good_count: int
    bad_count: int


LedgerEvent = Union[DeedRecorded, RewardClaimed]


class RecordDeedRequest(BaseModel):
    description: str = Field(..., description="Free-form description of the deed")
    is_good: bool

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "description": "Helped a neighbour carry groceries",
            "is_good": True,
        }
    })


class AmountRequest(BaseModel):
    amount: int = Field(..., ge=0, description="Amount in the smallest currency unit")


class ClassifyDeedRequest(BaseModel):
    text: str = Field(..., min_length=1)


class DeedCounts(BaseModel):
    good_count: int
    bad_count: int


class LedgerView(BaseModel):
    id: UUID
    owner: str
    deeds: list[Deed]
    good_count: int
    bad_count: int
    total_deeds: int
    reward_balance: int
    good_probability: int

    @classmethod
    def from_ledger(cls, ledger: UserLedger, good_probability: int) -> "LedgerView":
        return cls(
            id=ledger.id,
            owner=ledger.owner,
            deeds=list(ledger.deeds),
            good_count=ledger.good_count,
            bad_count=ledger.bad_count,
            total_deeds=ledger.total_deeds,
            reward_balance=ledger.reward_balance.value,
            good_probability=good_probability,
        )


class RegistryView(BaseModel):
    id: UUID
    admin: str
    reward_pool: int


class ClaimResponse(BaseModel):
    ledger_id: UUID
    amount_credited: int
    reward_balance: int


class WithdrawResponse(BaseModel):
    ledger_id: UUID
    amount: int
    reward_balance: int


class EventRecord(BaseModel):
    sequence: int
    emitted_at: datetime
    event: LedgerEvent = Field(..., discriminator="kind")


class EventsResponse(BaseModel):
    events: list[EventRecord]
    total_count: int


class DeedClassificationResponse(BaseModel):
    description: str
    is_good: bool
    source: str
    reason: Optional[str] = None
