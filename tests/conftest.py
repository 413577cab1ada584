"""Pytest configuration and shared fixtures for sankeyroute tests."""

import pytest

from sankeyroute import (
    Bounds,
    LinkRoutingManager,
    NodeHierarchyMapper,
    RouteCalculator,
    RoutingConfig,
)


class FakeClock:
    """Deterministic clock: every call advances by ``step`` seconds."""

    def __init__(self, step=0.0):
        self.now = 0.0
        self.step = step
        self.calls = 0

    def __call__(self):
        self.calls += 1
        current = self.now
        self.now += self.step
        return current


@pytest.fixture
def energy_nodes():
    """Seven-node national energy balance laid out in five columns."""
    return [
        {"name": "Producción<br>1.820 PJ", "x": 0.1, "y": 0.3},
        {"name": "Importación", "x": 0.1, "y": 0.7},
        {"name": "Oferta Interna Bruta", "x": 0.3, "y": 0.5},
        {"name": "Refinerías", "x": 0.5, "y": 0.3},
        {"name": "Centrales Eléctricas", "x": 0.5, "y": 0.7},
        {"name": "Transporte", "x": 0.7, "y": 0.5},
        {"name": "Consumo Final", "x": 0.9, "y": 0.5},
    ]


@pytest.fixture
def energy_links():
    """Links of the energy balance, with annotated magnitudes on two of them."""
    return [
        {"source": 0, "target": 2, "value": 1500, "customdata": "Petróleo crudo: 1500 PJ"},
        {"source": 1, "target": 2, "value": 320, "customdata": "Gas natural: 320.25 PJ"},
        {"source": 2, "target": 3, "value": 900},
        {"source": 2, "target": 4, "value": 700},
        {"source": 3, "target": 5, "value": 400},
        {"source": 4, "target": 5, "value": 150},
        {"source": 5, "target": 6, "value": 75, "customdata": "Electricidad: 75 PJ"},
        {"source": 2, "target": 6, "value": 5},
    ]


@pytest.fixture
def parallel_links():
    """Two links joining the same pair of nodes."""
    return [
        {"source": 0, "target": 1, "value": 200},
        {"source": 0, "target": 1, "value": 100},
    ]


@pytest.fixture
def two_nodes():
    """Source and target far apart on the same row."""
    return [
        {"name": "Producción", "x": 0.1, "y": 0.5},
        {"name": "Consumo", "x": 0.9, "y": 0.5},
    ]


@pytest.fixture
def blocking_box():
    """Box centred on (0.5, 0.4)."""
    return Bounds(left=0.48, right=0.52, top=0.38, bottom=0.42)


@pytest.fixture
def config():
    """Default RoutingConfig instance."""
    return RoutingConfig()


@pytest.fixture
def mapper():
    """Default NodeHierarchyMapper instance."""
    return NodeHierarchyMapper()


@pytest.fixture
def calculator():
    """Default RouteCalculator instance."""
    return RouteCalculator()


@pytest.fixture
def manager():
    """Default LinkRoutingManager instance."""
    return LinkRoutingManager()


@pytest.fixture
def fake_clock():
    """Clock that does not advance."""
    return FakeClock()


@pytest.fixture
def slow_clock():
    """Clock that advances one second per call."""
    return FakeClock(step=1.0)


@pytest.fixture
def make_clock():
    """Factory for clocks advancing by a given step per call."""
    return FakeClock
