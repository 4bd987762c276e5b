"""Two-stage search for a fair settlement plan with as few transfers as possible.

Stage A finds the smallest spread (epsilon) between final spends that any
plan can reach. Stage B looks, among plans with exactly that spread, for one
with the fewest nonzero transfers. The two objectives are never traded
against each other.

Stage B is a depth-first branch-and-bound over sets of transfer edges. A
node is a set of (payer, payee) edges; it is accepted when a max-flow can
route every person's required net outflow over those edges. Otherwise the
search branches on edges that must be part of any completion: an edge for
the first person who still lacks enough outgoing or incoming transfers, or,
once everybody has enough, an edge crossing the minimum cut that blocked the
flow.

A node is pruned on two lower bounds: every person who owes more than the
cap needs several transfers, and people joined by transfers form groups
that must each net to zero, so k people in g such groups need k - g
transfers. The seed settles each self-contained group on its own, which
meets the second bound whenever the cap allows.

The first level of branches is split into subtrees that workers search
independently; they share only the incumbent.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field

from .balances import equal_shares
from .constraints import ConstraintModel, Edge, NetBounds, split_groups
from .exceptions import InfeasibleBoundError, InfeasibleError
from .flow import route
from .models import TransactionPlan, Transfer

logger = logging.getLogger(__name__)

# The greedy seed outranks every subtree, so it wins any tie it is part of
SEED_RANK = -1

# Visited edge sets remembered per subtree
SEEN_LIMIT = 200_000


class CancellationToken:
    """Caller-held flag that stops a running search."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        """Ask the search to stop at its next branch expansion."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class SearchCancelled(Exception):
    """Raised inside the search to unwind once cancellation is requested."""

    pass


@dataclass(frozen=True)
class Candidate:
    """A complete plan found during the search.

    Candidates are ordered by transfer count, then by the rank of the subtree
    that found them. Each subtree is searched by a single worker in a fixed
    order, so the winner never depends on which worker finished first.
    """

    count: int
    rank: int
    edges: tuple[Edge, ...]
    floor: int = field(compare=False)

    @property
    def key(self) -> tuple:
        return (self.count, self.rank, self.edges)

    @classmethod
    def from_flows(cls, flows: dict[Edge, int], rank: int, floor: int) -> "Candidate":
        edges = tuple(sorted(edge for edge, amount in flows.items() if amount > 0))
        return cls(count=len(edges), rank=rank, edges=edges, floor=floor)


class Incumbent:
    """Best candidate shared between search workers.

    A candidate is only committed if it strictly improves on the current one,
    under the lock.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._best: Candidate | None = None

    @property
    def best(self) -> Candidate | None:
        return self._best

    def admits(self, bound: int, rank: int) -> bool:
        """Whether a node with this transfer bound, in this subtree, can still win."""
        best = self._best
        return best is None or (bound, rank) < (best.count, best.rank)

    def offer(self, candidate: Candidate) -> bool:
        """Commit the candidate if it beats the current best."""
        with self._lock:
            if self._best is None or candidate.key < self._best.key:
                self._best = candidate
                return True
            return False


class _StopCondition:
    """Cancellation token and deadline, checked at every expansion."""

    def __init__(self, token: CancellationToken | None, deadline: float | None):
        self.token = token
        self.deadline = deadline
        self._tripped = threading.Event()

    def poll(self) -> bool:
        """Whether the search should stop; once true, stays true."""
        if not self._tripped.is_set() and (
            (self.token is not None and self.token.cancelled)
            or (self.deadline is not None and time.monotonic() >= self.deadline)
        ):
            self._tripped.set()
        return self._tripped.is_set()

    def check(self) -> None:
        if self.poll():
            raise SearchCancelled()

    @property
    def tripped(self) -> bool:
        return self._tripped.is_set()


@dataclass
class _Subtree:
    """One first-level branch of a floor's search tree; owned by a single worker."""

    rank: int
    floor: int
    bounds: NetBounds
    root: frozenset[Edge]
    incumbent: Incumbent
    stop: _StopCondition
    seen: set[frozenset[Edge]] = field(default_factory=set)
    nodes: int = 0


@dataclass(frozen=True)
class SolverOutcome:
    """Plan produced by the solver, before validation."""

    plan: TransactionPlan
    epsilon: int
    exchange_count: int
    optimal: bool
    nodes_expanded: int


class Solver:
    """Lexicographic settlement solver: spread first, transfer count second."""

    def __init__(self, model: ConstraintModel, max_workers: int = 1):
        """
        Initialize the solver.

        Args:
            model: Constraint model of the kitty
            max_workers: Threads used to search subtrees in parallel
        """
        self.model = model
        self.max_workers = max(1, max_workers)

    def minimize_epsilon(self) -> int:
        """
        Stage A: smallest achievable spread between final spends.

        Feasibility only grows with epsilon, so the optimum is bisected
        between an infeasible lower bound and the best spread found so far.

        Raises:
            InfeasibleError: If no spread at all admits a plan
        """
        best = self.model.epsilon_ceiling()
        if not self.model.fits(best):
            raise InfeasibleError(
                "No settlement satisfies the transfer cap, exemption and "
                "participation caps"
            )

        infeasible = -1
        while best - infeasible > 1:
            probe = (infeasible + best) // 2
            if self.model.fits(probe):
                best = probe
            else:
                infeasible = probe

        logger.info(f"Smallest achievable epsilon: {best}")
        return best

    def solve(
        self,
        cancel: CancellationToken | None = None,
        deadline: float | None = None,
    ) -> SolverOutcome:
        """
        Run both stages and build the transaction plan.

        Args:
            cancel: Optional token to stop the search early
            deadline: Optional ``time.monotonic()`` timestamp to stop at

        Returns:
            Solver outcome; ``optimal`` is False if the search was cut short

        Raises:
            InfeasibleError: If no plan satisfies the hard constraints
            InfeasibleBoundError: If the requested epsilon is below the
                achievable one
        """
        epsilon = self.minimize_epsilon()
        if epsilon > self.model.fixed_epsilon:
            raise InfeasibleBoundError(
                achievable_epsilon=epsilon, requested_epsilon=self.model.fixed_epsilon
            )

        window = self.model.window(epsilon)
        assert window is not None, "Stage A returned an infeasible epsilon"
        floors = self.rank_floors(window, epsilon)

        incumbent = Incumbent()
        stop = _StopCondition(cancel, deadline)

        # Seeding is not cancellable so there is always a plan to return
        incumbent.offer(self._seed(floors[0], epsilon))

        root_bound = min(
            self.model.remaining_transfers(self.model.net_bounds(floor, epsilon), ())
            for floor in floors
        )
        if not stop.poll() and incumbent.best.count <= root_bound:
            logger.debug(f"Seed plan meets the lower bound of {root_bound} transfer(s)")
            floors = []

        subtrees: list[_Subtree] = []
        for floor in floors:
            bounds = self.model.net_bounds(floor, epsilon)
            flows, branches = self._branches(bounds, frozenset())
            if flows is not None:
                # Nobody needs to move money at this floor
                incumbent.offer(Candidate.from_flows(flows, SEED_RANK, floor))
                continue
            for edge in branches:
                subtrees.append(
                    _Subtree(
                        rank=len(subtrees),
                        floor=floor,
                        bounds=bounds,
                        root=frozenset({edge}),
                        incumbent=incumbent,
                        stop=stop,
                    )
                )

        logger.debug(
            f"Searching {len(subtrees)} subtree(s) over {len(floors)} floor(s) "
            f"with {self.max_workers} worker(s)"
        )
        self._run(subtrees)

        best = incumbent.best
        assert best is not None
        nodes = sum(subtree.nodes for subtree in subtrees)
        optimal = not stop.tripped
        if optimal:
            logger.info(
                f"Found optimal plan with {best.count} transfer(s) "
                f"({nodes} nodes expanded)"
            )
        else:
            logger.warning(
                f"Search cancelled after {nodes} nodes; returning best plan so far "
                f"({best.count} transfer(s))"
            )

        plan = self._build_plan(best, epsilon)
        return SolverOutcome(
            plan=plan,
            epsilon=epsilon,
            exchange_count=plan.exchange_count,
            optimal=optimal,
            nodes_expanded=nodes,
        )

    def rank_floors(self, window: tuple[int, int], epsilon: int) -> list[int]:
        """Order floors by how well their window centres on the equal share."""
        low, high = window
        shares = equal_shares(self.model.total, self.model.people).values()
        centre = min(shares) + max(shares)
        return sorted(
            range(low, high + 1),
            key=lambda floor: (abs(2 * floor + epsilon - centre), floor),
        )

    def _seed(self, floor: int, epsilon: int) -> Candidate:
        """
        Starting plan: settle groups separately, else the best greedy plan.

        The grouped plan is kept outright when it already meets the lower
        bound. Otherwise the reverse-delete plan is built too and the
        better of the two wins.
        """
        bounds = self.model.net_bounds(floor, epsilon)
        flows = self._grouped_flows(bounds)
        if flows is not None:
            grouped = Candidate.from_flows(flows, SEED_RANK, floor)
            if grouped.count <= self.model.remaining_transfers(bounds, ()):
                return grouped
            greedy = self._reverse_delete(floor, bounds)
            return min(grouped, greedy, key=lambda candidate: candidate.key)
        return self._reverse_delete(floor, bounds)

    def _grouped_flows(self, bounds: NetBounds) -> dict[Edge, int] | None:
        """
        Settle every self-contained group on its own, largest amounts first.

        A group of k people takes at most k - 1 transfers this way. Returns
        None if a transfer would break the cap or pay the exempt person.
        """
        model = self.model
        active = [i for i, bound in enumerate(bounds) if bound != (0, 0)]
        flows: dict[Edge, int] = {}
        for group in split_groups([bounds[i] for i in active]):
            # Slack goes to the exempt person first so they pay rather than receive
            members = sorted(
                (active[k] for k in group), key=lambda i: (i != model.exempt_index, i)
            )
            outflow = {i: bounds[i][0] for i in members}
            missing = -sum(outflow.values())
            for i in members:
                step = max(0, min(missing, bounds[i][1] - bounds[i][0]))
                outflow[i] += step
                missing -= step
            if missing != 0:
                return None

            payers = {i: amount for i, amount in outflow.items() if amount > 0}
            payees = {i: -amount for i, amount in outflow.items() if amount < 0}
            while payers:
                payer = max(payers, key=lambda i: (payers[i], -i))
                payee = max(payees, key=lambda i: (payees[i], -i))
                amount = min(payers[payer], payees[payee])
                if amount > model.max_transaction_amount or payee == model.exempt_index:
                    return None
                flows[(payer, payee)] = amount
                for side, person in ((payers, payer), (payees, payee)):
                    side[person] -= amount
                    if not side[person]:
                        del side[person]
        return flows

    def _reverse_delete(self, floor: int, bounds: NetBounds) -> Candidate:
        """
        Greedy plan: route over every edge, then drop what we can.

        Edges carrying the least money are tried first; whenever the rest
        still routes, the new (smaller) support replaces the old one.
        """
        model = self.model
        routing = route(
            model.size, model.allowed_edges(), bounds, model.max_transaction_amount
        )
        if not routing.feasible:
            raise InfeasibleError(f"Floor {floor} admits no routing")

        flows = routing.flows
        for edge in sorted(flows, key=lambda e: (flows[e], e)):
            if edge not in flows:
                continue
            remaining = sorted(e for e in flows if e != edge)
            attempt = route(model.size, remaining, bounds, model.max_transaction_amount)
            if attempt.feasible:
                flows = attempt.flows

        return Candidate.from_flows(flows, SEED_RANK, floor)

    def _branches(
        self, bounds: NetBounds, edges: frozenset[Edge]
    ) -> tuple[dict[Edge, int] | None, list[Edge]]:
        """
        Flows if ``edges`` already settle everyone, else the edges to branch on.

        Every branch edge is one that any completion must add at least one
        of, so the children cover all completions.
        """
        model = self.model
        shortfall = model.first_shortfall(bounds, edges)
        if shortfall is not None:
            person, outgoing = shortfall
            if outgoing:
                candidates = [(person, j) for j in range(model.size)]
            else:
                candidates = [(i, person) for i in range(model.size)]
            return None, [
                edge
                for edge in candidates
                if model.edge_allowed(*edge) and edge not in edges
            ]

        routing = route(
            model.size, sorted(edges), bounds, model.max_transaction_amount
        )
        if routing.feasible:
            return routing.flows, []

        side = routing.source_side
        return None, [
            (i, j)
            for i, j in model.allowed_edges()
            if i in side and j not in side and (i, j) not in edges
        ]

    def _run(self, subtrees: list[_Subtree]) -> None:
        if self.max_workers == 1 or len(subtrees) <= 1:
            for subtree in subtrees:
                self._search(subtree)
            return

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(self._search, subtree): subtree for subtree in subtrees
            }
            for future in as_completed(futures):
                future.result()

    def _search(self, subtree: _Subtree) -> None:
        try:
            self._expand(subtree, subtree.root)
        except SearchCancelled:
            logger.debug(f"Subtree {subtree.rank} search cancelled")

    def _expand(self, subtree: _Subtree, edges: frozenset[Edge]) -> None:
        subtree.stop.check()
        if edges in subtree.seen:
            return
        if len(subtree.seen) < SEEN_LIMIT:
            subtree.seen.add(edges)
        subtree.nodes += 1

        # Ties are only worth exploring in a subtree that outranks the best;
        # within a subtree the first plan in DFS order wins
        bound = len(edges) + self.model.remaining_transfers(subtree.bounds, edges)
        if not subtree.incumbent.admits(bound, subtree.rank):
            return

        flows, branches = self._branches(subtree.bounds, edges)
        if flows is not None:
            subtree.incumbent.offer(
                Candidate.from_flows(flows, subtree.rank, subtree.floor)
            )
            return

        for edge in branches:
            self._expand(subtree, edges | {edge})

    def _build_plan(self, candidate: Candidate, epsilon: int) -> TransactionPlan:
        """Route the winning edges once more so amounts never depend on timing."""
        model = self.model
        routing = route(
            model.size,
            list(candidate.edges),
            model.net_bounds(candidate.floor, epsilon),
            model.max_transaction_amount,
        )
        assert routing.feasible, "Winning edge set no longer routes"

        people = model.people
        return TransactionPlan(
            transfers=tuple(
                Transfer(payer=people[i], payee=people[j], amount=amount)
                for (i, j), amount in sorted(routing.flows.items())
            )
        )
