"""Independent acceptance check for solver-produced plans."""

import logging

from .constraints import ConstraintModel, Rule
from .exceptions import ConstraintViolationError
from .models import TransactionPlan

logger = logging.getLogger(__name__)


class PlanValidator:
    """Re-checks a finished plan from scratch before it is surfaced.

    Nothing here reuses solver state: final spends are re-derived from the
    balances and the plan alone.
    """

    def __init__(self, model: ConstraintModel):
        """Initialize the validator."""
        self.model = model

    def validate(
        self,
        plan: TransactionPlan,
        epsilon: int | None = None,
        exchange_count: int | None = None,
    ) -> dict[str, int]:
        """
        Accept a plan or raise on the first rule it breaks.

        Args:
            plan: The plan to check
            epsilon: Spread the solver claims the plan achieves
            exchange_count: Transfer count the solver claims

        Returns:
            Final spend per person

        Raises:
            ConstraintViolationError: Naming the failed rule
        """
        balances = self.model.balances
        people = set(balances.people)
        cap = self.model.max_transaction_amount

        pair_totals: dict[tuple[str, str], int] = {}
        for t in plan.transfers:
            if t.payer not in people or t.payee not in people:
                raise ConstraintViolationError(
                    Rule.UNKNOWN_PERSON.value,
                    f"transfer {t.payer} -> {t.payee} names someone outside the kitty",
                )
            if t.amount < 0:
                raise ConstraintViolationError(
                    Rule.TRANSFER_CAP.value,
                    f"{t.payer} -> {t.payee} has negative amount {t.amount}",
                )
            if t.payer == t.payee and t.amount:
                raise ConstraintViolationError(
                    Rule.SELF_TRANSFER.value, f"{t.payer} pays themselves {t.amount}"
                )
            if t.payee == balances.exempt and t.amount:
                raise ConstraintViolationError(
                    Rule.EXEMPT_RECEIVER.value,
                    f"exempt {t.payee} receives {t.amount} from {t.payer}",
                )
            pair = (t.payer, t.payee)
            pair_totals[pair] = pair_totals.get(pair, 0) + t.amount

        for (payer, payee), amount in pair_totals.items():
            if amount > cap:
                raise ConstraintViolationError(
                    Rule.TRANSFER_CAP.value,
                    f"{payer} -> {payee} moves {amount}, above the cap of {cap}",
                )

        final = {person: balances.initial_spend[person] for person in balances.people}
        for t in plan.transfers:
            final[t.payer] += t.amount
            final[t.payee] -= t.amount

        for person in balances.people:
            if final[person] > balances.participation_cap[person]:
                raise ConstraintViolationError(
                    Rule.PARTICIPATION_CAP.value,
                    f"{person} ends at {final[person]}, above their cap of "
                    f"{balances.participation_cap[person]}",
                )

        initial_total = sum(balances.initial_spend.values())
        if sum(final.values()) != initial_total:
            raise ConstraintViolationError(
                Rule.CONSERVATION.value,
                f"final spends total {sum(final.values())}, expected {initial_total}",
            )

        spread = max(final.values()) - min(final.values())
        if spread > self.model.fixed_epsilon:
            raise ConstraintViolationError(
                Rule.FAIRNESS.value,
                f"spread {spread} exceeds the bound of {self.model.fixed_epsilon}",
            )
        if epsilon is not None and spread != epsilon:
            raise ConstraintViolationError(
                Rule.FAIRNESS.value,
                f"plan spread is {spread} but {epsilon} was reported",
            )

        count = sum(1 for amount in pair_totals.values() if amount > 0)
        if exchange_count is not None and count != exchange_count:
            raise ConstraintViolationError(
                Rule.EXCHANGE_COUNT.value,
                f"plan has {count} transfers but {exchange_count} were reported",
            )

        # The model's own predicates must agree with the checks above
        broken = self.model.violations(plan)
        if broken:
            raise ConstraintViolationError(
                broken[0].value, "rejected by the constraint model"
            )

        logger.info(
            f"Plan accepted: {count} transfer(s), spread {spread} "
            f"(bound {self.model.fixed_epsilon})"
        )
        return final
