"""Service layer that composes the settlement pipeline.

Records flow strictly one way: balances, constraint model, solver, then
validation. Only validated plans leave this module.
"""

import hashlib
import logging
import time
from typing import Any

from .balances import BalanceComputer
from .config import Settings
from .constraints import ConstraintModel
from .exceptions import GroupTooLargeError
from .models import Balances, KittyInput, SettlementResult, TransactionPlan
from .solver import CancellationToken, Solver
from .validator import PlanValidator

logger = logging.getLogger(__name__)

# Default for per-call arguments that fall back to the settings
FROM_SETTINGS: Any = object()


class SettlementService:
    """Service for turning a kitty into a validated settlement plan."""

    def __init__(self, settings: Settings):
        """Initialize the settlement service."""
        self.settings = settings
        self.balance_computer = BalanceComputer()

    def compute_balances(self, kitty: KittyInput) -> Balances:
        """Derive balances without solving."""
        return self.balance_computer.compute(kitty)

    def settle(
        self,
        kitty: KittyInput,
        max_transaction_amount: int | None = None,
        fixed_epsilon: int | None = None,
        cancel: CancellationToken | None = None,
        timeout: float | None = FROM_SETTINGS,
    ) -> SettlementResult:
        """
        Compute and validate a settlement plan.

        Settings supply any value not passed explicitly.

        Args:
            kitty: The group and its records
            max_transaction_amount: Hard cap on any single transfer
            fixed_epsilon: Largest tolerated spread between final spends
            cancel: Optional token to stop the search early
            timeout: Seconds before the search returns its best plan so far;
                None searches until done

        Returns:
            Validated settlement result

        Raises:
            InvalidInputError: If the records are malformed or the group is
                too large to search
            InfeasibleError: If no plan satisfies the hard constraints
            InfeasibleBoundError: If ``fixed_epsilon`` cannot be reached
            ConstraintViolationError: If the solver produced an invalid plan
        """
        if max_transaction_amount is None:
            max_transaction_amount = self.settings.max_transaction_amount
        if fixed_epsilon is None:
            fixed_epsilon = self.settings.fixed_epsilon
        if timeout is FROM_SETTINGS:
            timeout = self.settings.search_timeout_seconds

        if len(kitty.people) > self.settings.max_participants:
            raise GroupTooLargeError(len(kitty.people), self.settings.max_participants)

        balances = self.balance_computer.compute(kitty)
        model = ConstraintModel(balances, max_transaction_amount, fixed_epsilon)
        solver = Solver(model, max_workers=self.settings.max_workers)

        deadline = time.monotonic() + timeout if timeout is not None else None
        outcome = solver.solve(cancel=cancel, deadline=deadline)

        final_spend = PlanValidator(model).validate(
            outcome.plan,
            epsilon=outcome.epsilon,
            exchange_count=outcome.exchange_count,
        )

        plan_id = compute_plan_id(kitty, outcome.plan)
        logger.info(
            f"Settled kitty of {len(balances.people)} people with "
            f"{outcome.exchange_count} transfer(s), epsilon {outcome.epsilon} "
            f"(plan {plan_id[:8]}...)"
        )

        return SettlementResult(
            plan=outcome.plan,
            epsilon=outcome.epsilon,
            exchange_count=outcome.exchange_count,
            initial_spend=dict(balances.initial_spend),
            final_spend=final_spend,
            status="optimal" if outcome.optimal else "cancelled",
            plan_id=plan_id,
        )


def compute_plan_id(kitty: KittyInput, plan: TransactionPlan) -> str:
    """
    Compute a deterministic identifier for a kitty and its plan.

    Record order does not matter; people order does, since it drives
    tie-breaking.

    Returns:
        SHA256 hash as hex string
    """
    parts = [
        "people:" + ",".join(kitty.people),
        f"exempt:{kitty.exempt or ''}",
        "gifts:" + ",".join(sorted(kitty.gifts)),
    ]
    parts.extend(
        sorted(f"c:{r.person}:{r.gift}:{r.amount}" for r in kitty.contributions)
    )
    parts.extend(
        sorted(
            f"p:{r.person}:{r.gift}:{int(r.participates)}" for r in kitty.participations
        )
    )
    parts.extend(f"t:{t.payer}:{t.payee}:{t.amount}" for t in plan.transfers)

    combined = "|".join(parts)
    return hashlib.sha256(combined.encode()).hexdigest()
