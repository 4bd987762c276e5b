"""Pydantic domain models for Kitty Settle."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

# ============================================================================
# Input Models
# ============================================================================


class ContributionRecord(BaseModel):
    """Amount a person spent on a gift, in the smallest currency unit."""

    person: str
    gift: str
    amount: int


class ParticipationRecord(BaseModel):
    """Whether a person is one of the buyers a gift was bought on behalf of."""

    person: str
    gift: str
    participates: bool = True


class KittyInput(BaseModel):
    """A shared-expense group: its people, gifts and raw records.

    Records may be given as lists of record objects, or in the dense form
    used by hand-written kitty files:

        contributions: {"alice": {"flowers": 1200}}
        participations: {"alice": ["flowers", "cake"]}

    Declaration order of ``people`` is significant: it is the stable order
    used to break ties, so the same kitty always settles the same way.
    """

    people: list[str]
    exempt: str | None = None
    gifts: list[str] = Field(default_factory=list)
    contributions: list[ContributionRecord] = Field(default_factory=list)
    participations: list[ParticipationRecord] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _expand_nested_records(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data

        data = dict(data)
        contributions = data.get("contributions")
        if isinstance(contributions, dict):
            data["contributions"] = [
                {"person": person, "gift": gift, "amount": amount}
                for person, spent in contributions.items()
                for gift, amount in spent.items()
            ]

        participations = data.get("participations")
        if isinstance(participations, dict):
            data["participations"] = [
                {"person": person, "gift": gift, "participates": True}
                for person, gifts in participations.items()
                for gift in gifts
            ]

        return data


# ============================================================================
# Derived Models
# ============================================================================


class Balances(BaseModel):
    """Per-person and per-gift totals derived from a kitty's records."""

    model_config = ConfigDict(frozen=True)

    people: list[str]
    exempt: str | None = None
    gifts: list[str]
    gift_price: dict[str, int]
    initial_spend: dict[str, int]
    participation_cap: dict[str, int]

    @property
    def total(self) -> int:
        """Total amount spent by the group."""
        return sum(self.initial_spend.values())


# ============================================================================
# Plan Models
# ============================================================================


class Transfer(BaseModel):
    """A single payment from one person to another."""

    model_config = ConfigDict(frozen=True)

    payer: str
    payee: str
    amount: int


class TransactionPlan(BaseModel):
    """An immutable set of transfers settling a kitty."""

    model_config = ConfigDict(frozen=True)

    transfers: tuple[Transfer, ...] = ()

    @property
    def exchange_count(self) -> int:
        """Number of transfers that actually move money."""
        return sum(1 for t in self.transfers if t.amount > 0)

    def amount(self, payer: str, payee: str) -> int:
        """Total amount the plan moves from payer to payee."""
        return sum(
            t.amount for t in self.transfers if t.payer == payer and t.payee == payee
        )

    def final_spend(self, initial_spend: dict[str, int]) -> dict[str, int]:
        """
        Apply the plan to initial spends.

        A payer's spend grows by what it gives, a payee's shrinks by what it
        receives, so the group total never changes.
        """
        final = dict(initial_spend)
        for t in self.transfers:
            final[t.payer] = final.get(t.payer, 0) + t.amount
            final[t.payee] = final.get(t.payee, 0) - t.amount
        return final


class SettlementResult(BaseModel):
    """A validated settlement plan and its measures."""

    plan: TransactionPlan
    epsilon: int
    exchange_count: int
    initial_spend: dict[str, int]
    final_spend: dict[str, int]
    status: Literal["optimal", "cancelled"] = "optimal"
    plan_id: str

    @property
    def optimal(self) -> bool:
        """False when the search was cut short and the plan may be improvable."""
        return self.status == "optimal"
