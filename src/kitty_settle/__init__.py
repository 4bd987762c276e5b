"""Kitty Settle - Fair, minimal settlement plans for shared-expense groups."""

__version__ = "0.1.0"

from .balances import BalanceComputer, equal_shares
from .config import Settings, load_settings
from .constraints import ConstraintModel, Rule
from .models import (
    Balances,
    ContributionRecord,
    KittyInput,
    ParticipationRecord,
    SettlementResult,
    TransactionPlan,
    Transfer,
)
from .service import SettlementService, compute_plan_id
from .solver import CancellationToken, Solver
from .validator import PlanValidator

__all__ = [
    "BalanceComputer",
    "equal_shares",
    "Settings",
    "load_settings",
    "ConstraintModel",
    "Rule",
    "Balances",
    "ContributionRecord",
    "KittyInput",
    "ParticipationRecord",
    "SettlementResult",
    "TransactionPlan",
    "Transfer",
    "SettlementService",
    "compute_plan_id",
    "CancellationToken",
    "Solver",
    "PlanValidator",
]
