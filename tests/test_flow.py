"""Tests for routing net outflows over chosen edges."""

from kitty_settle.flow import route


class TestRoute:
    """Tests for route."""

    def test_direct_transfer(self):
        """One debtor pays one creditor."""
        routing = route(2, [(0, 1)], [(50, 50), (-50, -50)], capacity=100)

        assert routing.feasible
        assert routing.flows == {(0, 1): 50}

    def test_through_intermediary(self):
        """Money can pass through a person whose net is zero."""
        routing = route(3, [(0, 1), (1, 2)], [(30, 30), (0, 0), (-30, -30)], capacity=30)

        assert routing.feasible
        assert routing.flows == {(0, 1): 30, (1, 2): 30}

    def test_split_across_payers(self):
        """A creditor owed more than the cap is paid by several people."""
        routing = route(
            3, [(1, 0), (2, 0)], [(-60, -60), (30, 30), (30, 30)], capacity=40
        )

        assert routing.feasible
        assert routing.flows == {(1, 0): 30, (2, 0): 30}

    def test_capacity_blocks(self):
        """Per-edge capacity is respected."""
        routing = route(2, [(0, 1)], [(50, 50), (-50, -50)], capacity=30)

        assert not routing.feasible
        assert 0 in routing.source_side
        assert 1 not in routing.source_side

    def test_ranges_allow_slack(self):
        """Bounds are ranges; any net in range is acceptable."""
        routing = route(2, [(0, 1)], [(10, 40), (-40, -20)], capacity=100)

        assert routing.feasible
        assert 20 <= routing.flows[(0, 1)] <= 40

    def test_antiparallel_edges_are_netted(self):
        """With both directions available only the net direction carries flow."""
        routing = route(2, [(0, 1), (1, 0)], [(20, 20), (-20, -20)], capacity=50)

        assert routing.feasible
        assert routing.flows == {(0, 1): 20}

    def test_missing_edge_reports_cut(self):
        """Without an edge out of the debtor the cut isolates them."""
        routing = route(3, [(1, 2)], [(10, 10), (0, 0), (-10, -10)], capacity=100)

        assert not routing.feasible
        assert 0 in routing.source_side
        assert 2 not in routing.source_side

    def test_empty_bounds_range(self):
        """A person whose low bound exceeds the high bound is infeasible."""
        routing = route(1, [], [(5, 4)], capacity=10)

        assert not routing.feasible

    def test_nothing_to_route(self):
        """When nobody has to move money, no edge is used."""
        routing = route(2, [(0, 1), (1, 0)], [(0, 0), (0, 0)], capacity=10)

        assert routing.feasible
        assert routing.flows == {}
