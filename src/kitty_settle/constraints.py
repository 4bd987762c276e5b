"""Hard settlement constraints and the bounds they induce for the search.

Final spends move only through transfers on a complete directed graph:
every person may pay every other person up to ``max_transaction_amount``,
except that nobody pays the exempt person. Whether a vector of net
outflows can be routed on that graph is decided by Hoffman's cut
conditions; because every edge has the same capacity, the tightest cut of
each size is simply the people with the most extreme balances, which keeps
the checks below to a sort and a prefix sum.
"""

import logging
from enum import Enum
from functools import lru_cache

from .exceptions import InvalidInputError
from .models import Balances, TransactionPlan

logger = logging.getLogger(__name__)

# (lowest, highest) net amount a person still has to pay out
NetRange = tuple[int, int]
NetBounds = list[NetRange]
Edge = tuple[int, int]


class Rule(str, Enum):
    """Settlement rules a plan is checked against."""

    TRANSFER_CAP = "transfer_cap"
    EXEMPT_RECEIVER = "exempt_receiver"
    SELF_TRANSFER = "self_transfer"
    PARTICIPATION_CAP = "participation_cap"
    CONSERVATION = "conservation"
    FAIRNESS = "fairness"
    UNKNOWN_PERSON = "unknown_person"
    EXCHANGE_COUNT = "exchange_count"


def _ceil_div(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)


def _prefix_sums(values: list[int]) -> list[int]:
    sums = [0]
    for value in values:
        sums.append(sums[-1] + value)
    return sums


# ----------------------------------------------------------------------
# Self-settling groups
# ----------------------------------------------------------------------

# Most groups the subset table is built for (2 ** 16 subsets)
GROUP_TABLE_LIMIT = 16
# Widest subset-sum bitset tried on larger groups, in bits
SUBSET_SUM_LIMIT = 1 << 24


def _group_table(ranges: tuple[NetRange, ...]) -> tuple[list[int], list[bool]]:
    """
    Longest chain of split points over every subset of ``ranges``.

    A subset is a split point when it can net to zero on its own and so can
    everything outside it. Splitting the ranges into k groups that each net
    to zero gives a chain of k split points ending at the full set, so
    ``best[full]`` is an upper bound on k (exact when every range is a
    single value).
    """
    size = len(ranges)
    full = (1 << size) - 1
    total_low = sum(low for low, _ in ranges)
    total_high = sum(high for _, high in ranges)

    lows = [0] * (full + 1)
    highs = [0] * (full + 1)
    best = [0] * (full + 1)
    stops = [False] * (full + 1)
    for mask in range(1, full + 1):
        bit = mask & -mask
        low, high = ranges[bit.bit_length() - 1]
        lows[mask] = lows[mask ^ bit] + low
        highs[mask] = highs[mask ^ bit] + high
        stops[mask] = (
            lows[mask] <= 0 <= highs[mask]
            and total_low - lows[mask] <= 0 <= total_high - highs[mask]
        )

        previous = 0
        rest = mask
        while rest:
            bit = rest & -rest
            previous = max(previous, best[mask ^ bit])
            rest ^= bit
        best[mask] = previous + stops[mask]
    return best, stops


def _has_zero_subset(values: list[int]) -> bool:
    """Whether some nonempty subset of ``values`` sums to zero.

    Answers True when the sums are too spread out to check.
    """
    offset = -sum(value for value in values if value < 0)
    if offset + sum(value for value in values if value > 0) > SUBSET_SUM_LIMIT:
        return True

    # Bit s + offset is set when some subset sums to s
    reachable = 1 << offset
    nonempty = 0
    for value in values:
        shifted = reachable << value if value >= 0 else reachable >> -value
        nonempty |= shifted
        reachable |= shifted
    return bool((nonempty >> offset) & 1)


@lru_cache(maxsize=4096)
def max_groups(ranges: tuple[NetRange, ...]) -> int:
    """
    Upper bound on how many groups the ranges split into, each netting to zero.

    Args:
        ranges: (low, high) net outflow of each part, sorted so equal
            multisets share a cache entry

    Returns:
        Number of groups; parts that owe nothing always count as one each
    """
    settled = sum(1 for r in ranges if r == (0, 0))
    active = tuple(r for r in ranges if r != (0, 0))
    if not active:
        return settled
    if len(active) <= GROUP_TABLE_LIMIT:
        best, _ = _group_table(active)
        return settled + best[-1]

    # Too many for the table; fixed amounts with no zero-sum subset stay whole
    fixed = all(low == high for low, high in active)
    if fixed and not _has_zero_subset([low for low, _ in active[1:]]):
        return settled + 1

    # Otherwise a part that cannot net to zero alone needs a partner
    alone = sum(1 for low, high in active if low <= 0 <= high)
    return settled + alone + (len(active) - alone) // 2


def split_groups(ranges: list[NetRange]) -> list[list[int]]:
    """
    Split indices of ``ranges`` into as many groups netting to zero as found.

    Follows the best chain of split points, merging consecutive pieces until
    each can net to zero. Past ``GROUP_TABLE_LIMIT`` parts everything stays
    in one group.
    """
    size = len(ranges)
    if size == 0:
        return []
    if size > GROUP_TABLE_LIMIT:
        return [list(range(size))]

    best, stops = _group_table(tuple(ranges))

    # Walk the best chain down from the full set
    removed = []
    mask = (1 << size) - 1
    while mask:
        target = best[mask] - stops[mask]
        for i in range(size):
            bit = 1 << i
            if mask & bit and best[mask ^ bit] == target:
                break
        removed.append(i)
        mask ^= bit

    groups = []
    current: list[int] = []
    low = high = 0
    for i in reversed(removed):
        current.append(i)
        mask |= 1 << i
        low += ranges[i][0]
        high += ranges[i][1]
        if stops[mask] and low <= 0 <= high:
            groups.append(sorted(current))
            current = []
            low = high = 0
    if current:
        groups.append(sorted(current))
    return groups


class ConstraintModel:
    """Constraint predicates and search bounds for one kitty."""

    def __init__(
        self, balances: Balances, max_transaction_amount: int, fixed_epsilon: int
    ):
        """
        Initialize the model.

        Args:
            balances: Derived balances of the kitty
            max_transaction_amount: Hard cap on any single transfer
            fixed_epsilon: Largest tolerated spread between final spends
        """
        if max_transaction_amount <= 0:
            raise InvalidInputError(
                f"max_transaction_amount must be positive, got {max_transaction_amount}"
            )
        if fixed_epsilon < 0:
            raise InvalidInputError(
                f"fixed_epsilon must not be negative, got {fixed_epsilon}"
            )

        self.balances = balances
        self.max_transaction_amount = max_transaction_amount
        self.fixed_epsilon = fixed_epsilon

        self.people = list(balances.people)
        self.size = len(self.people)
        self.index = {person: i for i, person in enumerate(self.people)}
        self.exempt_index = (
            self.index[balances.exempt] if balances.exempt is not None else None
        )
        self.spend = [balances.initial_spend[p] for p in self.people]
        self.caps = [balances.participation_cap[p] for p in self.people]
        self.total = sum(self.spend)

        self._regular = [i for i in range(self.size) if i != self.exempt_index]
        self._ceiling = self._compute_ceiling()

    # ------------------------------------------------------------------
    # Edge structure
    # ------------------------------------------------------------------

    def edge_allowed(self, payer: int, payee: int) -> bool:
        """No self-transfers and nothing flows into the exempt person."""
        return payer != payee and payee != self.exempt_index

    def allowed_edges(self) -> list[Edge]:
        """All transfer edges in declaration order."""
        return [
            (i, j)
            for i in range(self.size)
            for j in range(self.size)
            if self.edge_allowed(i, j)
        ]

    # ------------------------------------------------------------------
    # Bounds generation
    # ------------------------------------------------------------------

    def ceiling(self) -> int:
        """Highest floor L such that every final spend can be at least L."""
        return self._ceiling

    def _compute_ceiling(self) -> int:
        # A set X of people can only shed spend through edges leaving X, so
        # |X| * L <= spend(X) + capacity(X -> rest). The worst X of each size
        # holds the smallest spenders.
        m = self.max_transaction_amount
        n = self.size
        has_exempt = self.exempt_index is not None

        ceiling = min(self.caps)
        smallest = _prefix_sums(sorted(self.spend[i] for i in self._regular))
        for k in range(1, n + 1):
            if k <= len(self._regular):
                receivers = n - k - (1 if has_exempt else 0)
                ceiling = min(ceiling, (m * k * receivers + smallest[k]) // k)
            if has_exempt:
                exempt_spend = self.spend[self.exempt_index]
                ceiling = min(
                    ceiling, (m * k * (n - k) + exempt_spend + smallest[k - 1]) // k
                )
        return ceiling

    def absorbs(self, floor: int, epsilon: int) -> bool:
        """
        Check that everyone can be brought down to at most ``floor + epsilon``.

        A set Z of people can only lose spend through edges entering Z, and
        the exempt person has none.
        """
        m = self.max_transaction_amount
        n = self.size
        inflow = [
            self.spend[i] - min(floor + epsilon, self.caps[i]) for i in range(n)
        ]
        largest = _prefix_sums(
            sorted((inflow[i] for i in self._regular), reverse=True)
        )
        for k in range(1, n + 1):
            if k <= len(self._regular) and largest[k] > m * (n - k) * k:
                return False
            if self.exempt_index is not None:
                needed = inflow[self.exempt_index] + largest[k - 1]
                if needed > m * (n - k) * (k - 1):
                    return False
        return True

    def fits(self, epsilon: int) -> bool:
        """Whether some plan keeps all final spends within ``epsilon``."""
        return self.absorbs(self._ceiling, epsilon)

    def epsilon_ceiling(self) -> int:
        """An epsilon past which widening the window cannot help."""
        return max(0, max(self.caps) - self._ceiling)

    def window(self, epsilon: int) -> tuple[int, int] | None:
        """
        Admissible floors for a given spread.

        Args:
            epsilon: Spread between the lowest and highest final spend

        Returns:
            (lowest floor, highest floor) such that final spends can all lie
            in ``[L, L + epsilon]`` for every L in the range, or None
        """
        high = self._ceiling
        if not self.absorbs(high, epsilon):
            return None

        # Below total // n - epsilon the group cannot hold its own total
        low = self.total // self.size - epsilon - 1
        top = high
        while top - low > 1:
            middle = (low + top) // 2
            if self.absorbs(middle, epsilon):
                top = middle
            else:
                low = middle
        return top, high

    def net_bounds(self, floor: int, epsilon: int) -> NetBounds:
        """Per-person range of net outflow (paid minus received)."""
        return [
            (floor - self.spend[i], min(floor + epsilon, self.caps[i]) - self.spend[i])
            for i in range(self.size)
        ]

    # ------------------------------------------------------------------
    # Partial feasibility
    # ------------------------------------------------------------------

    def _shortfalls(
        self, bounds: NetBounds, edges
    ) -> tuple[list[int], list[int]]:
        m = self.max_transaction_amount
        out_degree = [0] * self.size
        in_degree = [0] * self.size
        for payer, payee in edges:
            out_degree[payer] += 1
            in_degree[payee] += 1

        out_short = []
        in_short = []
        for i, (low, high) in enumerate(bounds):
            needed_out = _ceil_div(low, m) if low > 0 else 0
            needed_in = _ceil_div(-high, m) if high < 0 else 0
            out_short.append(max(0, needed_out - out_degree[i]))
            in_short.append(max(0, needed_in - in_degree[i]))
        return out_short, in_short

    def missing_edges(self, bounds: NetBounds, edges) -> int:
        """
        Lower bound on how many more transfers a partial edge set needs.

        Each transfer adds one outgoing and one incoming edge, so the larger
        of the two total degree shortfalls is a valid bound.
        """
        out_short, in_short = self._shortfalls(bounds, edges)
        return max(sum(out_short), sum(in_short))

    def grouping_shortfall(self, bounds: NetBounds, edges) -> int:
        """
        Lower bound on more transfers from how people have to group up.

        People joined by transfers form a group that nets to zero, and a
        group of k people needs k - 1 transfers to hold together. Each new
        transfer joins at most two of the current groups, and they can end
        up no more numerous than ``max_groups`` allows.
        """
        parent = list(range(self.size))

        def find(i: int) -> int:
            while parent[i] != i:
                parent[i] = parent[parent[i]]
                i = parent[i]
            return i

        for payer, payee in edges:
            parent[find(payer)] = find(payee)

        totals: dict[int, tuple[int, int]] = {}
        for i, (low, high) in enumerate(bounds):
            root = find(i)
            group_low, group_high = totals.get(root, (0, 0))
            totals[root] = (group_low + low, group_high + high)

        ranges = tuple(sorted(totals.values()))
        return len(ranges) - max_groups(ranges)

    def remaining_transfers(self, bounds: NetBounds, edges) -> int:
        """Lower bound on how many transfers a partial edge set still needs."""
        return max(
            self.missing_edges(bounds, edges), self.grouping_shortfall(bounds, edges)
        )

    def first_shortfall(self, bounds: NetBounds, edges) -> tuple[int, bool] | None:
        """First person (in declaration order) lacking edges, and whether outgoing."""
        out_short, in_short = self._shortfalls(bounds, edges)
        for i in range(self.size):
            if out_short[i]:
                return i, True
            if in_short[i]:
                return i, False
        return None

    # ------------------------------------------------------------------
    # Finished plans
    # ------------------------------------------------------------------

    def violations(self, plan: TransactionPlan) -> list[Rule]:
        """List every rule the plan breaks, in rule order."""
        broken: list[Rule] = []

        def note(rule: Rule) -> None:
            if rule not in broken:
                broken.append(rule)

        totals: dict[tuple[str, str], int] = {}
        for transfer in plan.transfers:
            if transfer.payer not in self.index or transfer.payee not in self.index:
                note(Rule.UNKNOWN_PERSON)
                continue
            if transfer.amount < 0:
                note(Rule.TRANSFER_CAP)
            key = (transfer.payer, transfer.payee)
            totals[key] = totals.get(key, 0) + transfer.amount

        for (payer, payee), amount in totals.items():
            if amount > self.max_transaction_amount:
                note(Rule.TRANSFER_CAP)
            if payee == self.balances.exempt and amount != 0:
                note(Rule.EXEMPT_RECEIVER)
            if payer == payee and amount != 0:
                note(Rule.SELF_TRANSFER)

        if Rule.UNKNOWN_PERSON in broken:
            return broken

        final = plan.final_spend(self.balances.initial_spend)
        if any(final[p] > self.balances.participation_cap[p] for p in self.people):
            note(Rule.PARTICIPATION_CAP)
        if sum(final.values()) != self.total:
            note(Rule.CONSERVATION)
        if max(final.values()) - min(final.values()) > self.fixed_epsilon:
            note(Rule.FAIRNESS)

        return broken

    def is_feasible(self, plan: TransactionPlan) -> bool:
        """Whether the plan satisfies every hard constraint."""
        return not self.violations(plan)
