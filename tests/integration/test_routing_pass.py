"""Integration tests for complete routing passes.

These tests route a small national energy balance end to end, the way a
renderer would call the engine.
"""

import asyncio

import pytest

from sankeyroute import LinkRoutingManager, RoutingAlgorithm


@pytest.fixture
def routed(fake_clock, energy_nodes, energy_links):
    """Manager after one default pass over the energy balance."""
    manager = LinkRoutingManager(clock=fake_clock)
    routes = asyncio.run(manager.calculate_routes(energy_links, energy_nodes))
    return manager, routes


class TestEnergyBalance:
    """Integration tests on the energy balance diagram."""

    def test_endpoints_on_node_edges(self, routed):
        """Routes leave the source's right edge and enter the target's left edge."""
        manager, routes = routed
        for route in routes:
            source = manager.last_hierarchy[route.source_index]
            target = manager.last_hierarchy[route.target_index]
            start, end = route.path.control_points[0], route.path.control_points[3]
            assert (start.x, start.y) == pytest.approx((source.bounds.right, source.position.y))
            assert (end.x, end.y) == pytest.approx((target.bounds.left, target.position.y))
            assert route.render.x[0] == pytest.approx(start.x)
            assert route.render.y[-1] == pytest.approx(end.y)

    def test_surface_payload(self, routed):
        """Each route converts to the renderer payload."""
        _, routes = routed
        surface = routes[0].to_surface()
        assert set(surface) == {
            "id",
            "svgPath",
            "x",
            "y",
            "rendererConfig",
            "color",
            "width",
            "flowType",
            "priority",
        }
        assert surface["id"] == "link_0_0_2"
        assert surface["svgPath"].startswith("M ")
        assert surface["flowType"] == "primary"
        assert surface["rendererConfig"]["line"]["width"] == surface["width"]

    def test_large_flows_are_wider(self, routed):
        """The main crude oil flow is drawn wider than the small bypass."""
        _, routes = routed
        assert routes[0].stroke_width > routes[7].stroke_width
        assert routes[7].routing.flow_type == "distribution"

    def test_bypass_bends_around_transport(self, routed):
        """The hub -> final consumption link bends above the node in its way."""
        manager, routes = routed
        bypass = routes[7]
        assert (bypass.source_index, bypass.target_index) == (2, 6)
        assert bypass.path.control_points[1].y < 0.5
        assert bypass.routing.collisions == 0
        assert manager.last_hierarchy[5].bounds in bypass.routing.avoidance_zones

    def test_hierarchy_published(self, routed):
        """The hierarchy of the pass is kept with its routes."""
        manager, _ = routed
        assert manager.last_hierarchy[2].role == "hub"
        assert manager.get_hierarchy_stats()["cache_size"] == 1

    def test_repeated_pass_uses_cached_hierarchy(self, routed, energy_nodes, energy_links):
        """A second identical pass reuses the hierarchy and gives the same paths."""
        manager, routes = routed
        hierarchy = manager.last_hierarchy
        again = asyncio.run(manager.calculate_routes(energy_links, energy_nodes))
        assert manager.last_hierarchy is hierarchy
        assert [r.render.svg_path for r in again] == [r.render.svg_path for r in routes]
        assert manager.metrics.total_calculations == 2


class TestAlgorithmsAndModes:
    """Every strategy works in every performance mode."""

    @pytest.mark.parametrize("mode", ["fast", "balanced", "quality"])
    @pytest.mark.parametrize("algorithm", RoutingAlgorithm.names())
    def test_every_link_routed(self, fake_clock, energy_nodes, energy_links, algorithm, mode):
        """A pass yields one route per link; fast mode always routes with arcs."""
        manager = LinkRoutingManager(
            config={"routing_algorithm": algorithm, "performance_mode": mode},
            clock=fake_clock,
        )
        routes = asyncio.run(manager.calculate_routes(energy_links, energy_nodes))
        assert len(routes) == len(energy_links)
        expected = "arc-minimal" if mode == "fast" else algorithm
        assert {r.routing.algorithm for r in routes} == {expected}
        assert len({r.id for r in routes}) == len(routes)

    def test_spline_has_two_segments(self, fake_clock, energy_nodes, energy_links):
        """Spline routes are drawn with two cubic commands."""
        manager = LinkRoutingManager(
            config={"routing_algorithm": "spline-smooth"}, clock=fake_clock
        )
        routes = asyncio.run(manager.calculate_routes(energy_links, energy_nodes))
        assert all(r.render.svg_path.count("C ") == 2 for r in routes)
        assert all(len(r.path.segments) == 2 for r in routes)
