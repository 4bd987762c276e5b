"""Derive each participant's position from a kitty's raw records."""

import logging

from .exceptions import InvalidInputError, UnknownEntityError
from .models import Balances, KittyInput

logger = logging.getLogger(__name__)


def equal_shares(total: int, people: list[str]) -> dict[str, int]:
    """
    Split an integer total as evenly as possible.

    Everyone gets ``total // n``; the ``total % n`` leftover units go one
    each to the first people in declaration order.

    Args:
        total: Amount to split, in the smallest currency unit
        people: People sharing the total, in declaration order

    Returns:
        Share per person, summing exactly to ``total``
    """
    if not people:
        return {}

    base, remainder = divmod(total, len(people))
    return {
        person: base + (1 if index < remainder else 0)
        for index, person in enumerate(people)
    }


class BalanceComputer:
    """Computes gift prices, initial spends and participation caps."""

    def compute(self, kitty: KittyInput) -> Balances:
        """
        Derive balances for every person and gift in the kitty.

        Args:
            kitty: The group and its contribution/participation records

        Returns:
            Derived balances

        Raises:
            InvalidInputError: On a negative amount, a duplicate record or a
                duplicate/empty universe
            UnknownEntityError: When a record names a person or gift the
                kitty does not declare
        """
        people = self._check_universe(kitty.people, "person")
        gifts = self._check_universe(kitty.gifts, "gift")

        if not people:
            raise InvalidInputError("A kitty needs at least one person")

        if kitty.exempt is not None and kitty.exempt not in people:
            raise UnknownEntityError(
                f"Exempt person '{kitty.exempt}' is not part of the kitty",
                record=kitty.exempt,
            )

        spent: dict[tuple[str, str], int] = {}
        for record in kitty.contributions:
            self._check_reference(record.person, record.gift, people, gifts, record)
            if record.amount < 0:
                raise InvalidInputError(
                    f"Negative amount {record.amount} spent by '{record.person}' "
                    f"on '{record.gift}'",
                    record=record,
                )
            key = (record.person, record.gift)
            if key in spent:
                raise InvalidInputError(
                    f"Duplicate contribution of '{record.person}' to '{record.gift}'",
                    record=record,
                )
            spent[key] = record.amount

        participating: set[tuple[str, str]] = set()
        seen: set[tuple[str, str]] = set()
        for participation in kitty.participations:
            self._check_reference(
                participation.person, participation.gift, people, gifts, participation
            )
            key = (participation.person, participation.gift)
            if key in seen:
                raise InvalidInputError(
                    f"Duplicate participation of '{participation.person}' "
                    f"in '{participation.gift}'",
                    record=participation,
                )
            seen.add(key)
            if participation.participates:
                participating.add(key)

        gift_price = {gift: 0 for gift in gifts}
        initial_spend = {person: 0 for person in people}
        for (person, gift), amount in spent.items():
            gift_price[gift] += amount
            initial_spend[person] += amount

        participation_cap = {
            person: sum(
                gift_price[gift] for gift in gifts if (person, gift) in participating
            )
            for person in people
        }

        assert sum(initial_spend.values()) == sum(gift_price.values())

        logger.info(
            f"Computed balances for {len(people)} people and {len(gifts)} gifts "
            f"(total spent: {sum(gift_price.values())})"
        )

        return Balances(
            people=people,
            exempt=kitty.exempt,
            gifts=gifts,
            gift_price=gift_price,
            initial_spend=initial_spend,
            participation_cap=participation_cap,
        )

    @staticmethod
    def _check_universe(names: list[str], kind: str) -> list[str]:
        """Reject duplicated identifiers, keeping declaration order."""
        seen: set[str] = set()
        for name in names:
            if name in seen:
                raise InvalidInputError(f"Duplicate {kind} '{name}'", record=name)
            seen.add(name)
        return list(names)

    @staticmethod
    def _check_reference(
        person: str, gift: str, people: list[str], gifts: list[str], record
    ) -> None:
        if person not in people:
            raise UnknownEntityError(f"Unknown person '{person}'", record=record)
        if gift not in gifts:
            raise UnknownEntityError(f"Unknown gift '{gift}'", record=record)
