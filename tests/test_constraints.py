"""Tests for the constraint model: cut bounds, floors and plan predicates."""

import pytest

from kitty_settle.balances import BalanceComputer
from kitty_settle.constraints import ConstraintModel, Rule, max_groups, split_groups
from kitty_settle.exceptions import InvalidInputError
from kitty_settle.models import KittyInput, TransactionPlan, Transfer


def make_model(
    spend: dict[str, int],
    max_transaction_amount: int,
    fixed_epsilon: int = 0,
    exempt: str | None = None,
) -> ConstraintModel:
    """One shared gift that everybody takes part in, paid as given."""
    people = list(spend)
    kitty = KittyInput(
        people=people,
        exempt=exempt,
        gifts=["gift"],
        contributions={p: {"gift": amount} for p, amount in spend.items() if amount},
        participations={p: ["gift"] for p in people},
    )
    balances = BalanceComputer().compute(kitty)
    return ConstraintModel(balances, max_transaction_amount, fixed_epsilon)


def plan(*transfers: tuple[str, str, int]) -> TransactionPlan:
    return TransactionPlan(
        transfers=tuple(Transfer(payer=a, payee=b, amount=x) for a, b, x in transfers)
    )


class TestConstruction:
    """Tests for ConstraintModel parameters."""

    def test_rejects_non_positive_cap(self):
        """The transfer cap must be positive."""
        with pytest.raises(InvalidInputError, match="max_transaction_amount"):
            make_model({"a": 10, "b": 0}, max_transaction_amount=0)

    def test_rejects_negative_epsilon(self):
        """The fairness bound cannot be negative."""
        with pytest.raises(InvalidInputError, match="fixed_epsilon"):
            make_model({"a": 10, "b": 0}, max_transaction_amount=10, fixed_epsilon=-1)


class TestEdges:
    """Tests for the transfer graph."""

    def test_complete_graph_without_exempt(self):
        """Everybody may pay everybody else."""
        model = make_model({"a": 0, "b": 0, "c": 0}, max_transaction_amount=10)

        assert len(model.allowed_edges()) == 6
        assert not model.edge_allowed(1, 1)

    def test_nobody_pays_exempt(self):
        """Edges into the exempt person are excluded."""
        model = make_model({"a": 0, "b": 0, "c": 0}, 10, exempt="a")

        assert (1, 0) not in model.allowed_edges()
        assert (2, 0) not in model.allowed_edges()
        assert (0, 1) in model.allowed_edges()


class TestBounds:
    """Tests for ceilings, epsilon feasibility and floor windows."""

    def test_two_people_even_split(self):
        """A pays 100 for two, B owes 50, the cap is generous."""
        model = make_model({"A": 100, "B": 0}, max_transaction_amount=180)

        assert model.ceiling() == 50
        assert model.fits(0)
        assert model.window(0) == (50, 50)

    def test_cap_limits_fairness(self):
        """With a 30 cap, B can lift at most 30 off A: best spread is 40."""
        model = make_model({"A": 100, "B": 0}, max_transaction_amount=30)

        assert model.ceiling() == 30
        assert not model.fits(39)
        assert model.fits(40)
        assert model.window(40) == (30, 30)
        assert model.window(39) is None

    def test_exempt_cannot_receive(self):
        """B and C cannot shed spend to exempt A, so the floor is their average."""
        model = make_model({"A": 0, "B": 90, "C": 0}, 1000, exempt="A")

        assert model.ceiling() == 30
        assert model.window(0) == (30, 30)

    def test_window_widens_with_epsilon(self):
        """A larger spread admits a range of floors."""
        model = make_model({"A": 100, "B": 0}, max_transaction_amount=180)

        low, high = model.window(10)

        assert high == 50
        assert low == 40

    def test_ceiling_bounded_by_participation(self):
        """Nobody can be pushed above their participation cap."""
        kitty = KittyInput(
            people=["a", "b"],
            gifts=["g", "h"],
            contributions={"a": {"g": 10}, "b": {"h": 50}},
            participations={"a": ["g"], "b": ["g", "h"]},
        )
        balances = BalanceComputer().compute(kitty)
        model = ConstraintModel(balances, 1000, 0)

        assert model.ceiling() <= 10

    def test_net_bounds(self):
        """Net outflow ranges bring each person into the window."""
        model = make_model({"A": 100, "B": 0}, max_transaction_amount=180)

        assert model.net_bounds(50, 0) == [(-50, -50), (50, 50)]
        assert model.net_bounds(40, 10) == [(-60, -50), (40, 50)]


class TestPartialFeasibility:
    """Tests for degree-based lower bounds used to prune the search."""

    def test_missing_edges_counts_degree_needs(self):
        """A debtor owing twice the cap needs two outgoing transfers."""
        model = make_model({"A": 100, "B": 0, "C": 0}, max_transaction_amount=40)
        # floor 33, epsilon 1: A must receive 66..67, B and C pay 33..34
        bounds = model.net_bounds(33, 1)

        assert model.missing_edges(bounds, []) == 2
        assert model.missing_edges(bounds, [(1, 0)]) == 1
        assert model.missing_edges(bounds, [(1, 0), (2, 0)]) == 0

    def test_first_shortfall_in_declaration_order(self):
        """The first person lacking edges is reported with the direction."""
        model = make_model({"A": 100, "B": 0, "C": 0}, max_transaction_amount=40)
        bounds = model.net_bounds(33, 1)

        assert model.first_shortfall(bounds, []) == (0, False)
        assert model.first_shortfall(bounds, [(1, 0), (2, 0)]) is None

    def test_large_debt_needs_several_edges(self):
        """Receiving 66 under a cap of 30 takes at least three transfers."""
        model = make_model({"A": 100, "B": 0, "C": 0}, max_transaction_amount=30)
        bounds = [(-66, -66), (33, 33), (33, 33)]

        assert model.missing_edges(bounds, []) == 4
        assert model.first_shortfall(bounds, [(1, 0), (2, 0)]) == (0, False)


class TestGrouping:
    """Tests for the bound from groups that must each net to zero."""

    def test_pair_needs_one_transfer(self):
        """Two people settle with one transfer."""
        model = make_model({"A": 100, "B": 0}, max_transaction_amount=180)

        assert model.grouping_shortfall(model.net_bounds(50, 0), []) == 1

    def test_independent_pairs(self):
        """A and B settle between themselves, as do C and D."""
        model = make_model({"A": 30, "B": 10, "C": 40, "D": 0}, 1000)
        bounds = model.net_bounds(20, 0)

        assert model.grouping_shortfall(bounds, []) == 2
        assert model.remaining_transfers(bounds, []) == 2

    def test_joining_the_wrong_pair_costs_a_transfer(self):
        """Once B pays C, all four people end up in one group."""
        model = make_model({"A": 30, "B": 10, "C": 40, "D": 0}, 1000)
        bounds = model.net_bounds(20, 0)

        assert model.missing_edges(bounds, [(1, 2)]) == 1
        assert model.grouping_shortfall(bounds, [(1, 2)]) == 2
        assert model.remaining_transfers(bounds, [(1, 2)]) == 2

    def test_settled_kitty(self):
        """Nobody owes anything, nothing is needed."""
        model = make_model({"A": 10, "B": 10, "C": 10}, 10)

        assert model.grouping_shortfall(model.net_bounds(10, 0), []) == 0

    def test_ranges(self):
        """Spreads of one unit still leave a single group of three."""
        model = make_model({"A": 100, "B": 0, "C": 0}, 1000)

        assert model.grouping_shortfall(model.net_bounds(33, 1), []) == 2

    def test_max_groups_fixed_amounts(self):
        """Fixed amounts split into every zero-sum group there is."""
        assert max_groups(((-3, -3), (-2, -2), (2, 2), (3, 3))) == 2

    def test_max_groups_counts_settled_parts(self):
        """Parts owing nothing count as groups of their own."""
        assert max_groups(((-1, -1), (0, 0), (0, 0), (1, 1))) == 3

    def test_max_groups_needs_rest_to_net_to_zero(self):
        """A part that nets to zero alone does not help if the rest cannot."""
        assert max_groups(((-3, 3), (-2, -2), (1, 1))) == 1

    def test_max_groups_many_parts_without_zero_subset(self):
        """Past the table limit, fixed amounts with no zero-sum subset stay whole."""
        ranges = ((-95, -95),) + ((5, 5),) * 19

        assert max_groups(ranges) == 1

    def test_max_groups_many_parts_with_pairs(self):
        """Past the table limit, every group still needs two parts."""
        ranges = ((-1, -1),) * 10 + ((1, 1),) * 10

        assert max_groups(ranges) == 10

    def test_split_groups(self):
        """Fixed amounts split into three zero-sum groups."""
        values = [5, 7, -12, 1, 3, 9, -13, 27, -27]

        groups = split_groups([(v, v) for v in values])

        assert len(groups) == 3
        assert sorted(i for group in groups for i in group) == list(range(9))
        assert all(sum(values[i] for i in group) == 0 for group in groups)

    def test_split_groups_too_many_parts(self):
        """Past the table limit everyone stays in one group."""
        groups = split_groups([(1, 1)] * 17)

        assert groups == [list(range(17))]


class TestViolations:
    """Tests for the hard-constraint predicates on finished plans."""

    @pytest.fixture
    def model(self):
        return make_model({"A": 100, "B": 0}, max_transaction_amount=60)

    def test_fair_plan_is_feasible(self, model):
        """B paying A half leaves both at 50."""
        assert model.is_feasible(plan(("B", "A", 50)))

    def test_over_cap(self):
        """Transfers above the cap are flagged."""
        model = make_model({"A": 100, "B": 0}, max_transaction_amount=40)

        assert Rule.TRANSFER_CAP in model.violations(plan(("B", "A", 50)))

    def test_split_transfers_still_capped(self, model):
        """Two transfers on the same pair count against the cap together."""
        violations = model.violations(plan(("B", "A", 40), ("B", "A", 30)))

        assert Rule.TRANSFER_CAP in violations

    def test_exempt_receiver(self):
        """Nobody may pay the exempt person."""
        model = make_model({"A": 0, "B": 90, "C": 0}, 1000, 100, exempt="A")

        assert Rule.EXEMPT_RECEIVER in model.violations(plan(("B", "A", 10)))

    def test_self_transfer(self, model):
        """Paying yourself is not a transfer."""
        assert Rule.SELF_TRANSFER in model.violations(plan(("A", "A", 5)))

    def test_participation_cap(self):
        """Final spend cannot exceed the cap."""
        kitty = KittyInput(
            people=["a", "b"],
            gifts=["g"],
            contributions={"a": {"g": 10}},
            participations={"a": ["g"]},
        )
        balances = BalanceComputer().compute(kitty)
        model = ConstraintModel(balances, 100, 100)

        assert Rule.PARTICIPATION_CAP in model.violations(plan(("a", "b", 5)))

    def test_fairness(self, model):
        """An unsettled kitty is unfair at epsilon 0."""
        assert model.violations(TransactionPlan()) == [Rule.FAIRNESS]

    def test_unknown_person(self, model):
        """Transfers must stay within the kitty."""
        assert model.violations(plan(("Z", "A", 50))) == [Rule.UNKNOWN_PERSON]
