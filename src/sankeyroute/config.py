"""
Routing configuration.

RoutingConfig holds every tunable of a routing pass. Updates go through
per-field validation: each key is checked against its FieldSpec and invalid
keys are dropped, so a partial update is never half-applied to one field.

Keys may be given in snake_case or camelCase ("linkSeparation").
"""

import re
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .hierarchy import FLOW_TYPE_WEIGHTS


class RoutingAlgorithm(Enum):
    """Closed set of routing strategies."""

    BEZIER_OPTIMIZED = "bezier-optimized"
    SPLINE_SMOOTH = "spline-smooth"
    ARC_MINIMAL = "arc-minimal"
    STRAIGHT = "straight"

    @classmethod
    def names(cls) -> List[str]:
        return [member.value for member in cls]


PERFORMANCE_MODES = ("fast", "balanced", "quality")
VISUAL_QUALITY_LEVELS = ("fast", "balanced", "high")

# Bounds applied when the performance mode changes
FAST_MODE_MAX_ITERATIONS = 25
QUALITY_MODE_MIN_ITERATIONS = 75
FAST_MODE_MAX_CALCULATION_TIME = 200
QUALITY_MODE_MIN_CALCULATION_TIME = 1000

# Largest accepted weight of a flow type
MAX_FLOW_PRIORITY = 2.0


@dataclass
class RoutingConfig:
    """
    Tunables of a routing pass.

    Curvatures and separations are fractions of the diagram area; times are
    in milliseconds. curvature_step is the amount auto-optimization takes off
    curvature after a moderate overrun. flow_priorities weighs route priority
    per flow type, for the hierarchy and the routes alike.
    """

    curvature: float = 0.3
    min_curvature: float = 0.1
    max_curvature: float = 0.8
    curvature_step: float = 0.05

    link_separation: float = 0.02
    group_separation: float = 0.05
    separation_multiplier: float = 1.0

    avoidance_radius: float = 0.05
    avoidance_strength: float = 1.0
    avoidance_decay: float = 0.8

    performance_mode: str = "balanced"
    visual_quality: str = "balanced"
    routing_algorithm: str = RoutingAlgorithm.BEZIER_OPTIMIZED.value

    max_calculation_time: float = 500
    fallback_threshold: float = 1000
    max_iterations: int = 50
    sample_points: int = 20
    render_samples: int = 50

    adaptive_curvature: bool = True
    enable_routing: bool = True
    auto_optimization: bool = True
    smart_avoidance: bool = True

    flow_priorities: Dict[str, float] = field(default_factory=lambda: dict(FLOW_TYPE_WEIGHTS))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def copy(self) -> "RoutingConfig":
        return replace(self, flow_priorities=dict(self.flow_priorities))

    def with_values(self, values: Mapping[str, Any]) -> "RoutingConfig":
        """
        Return a copy with already-validated ``values`` applied.

        flow_priorities is merged over the current weights, so one flow type
        can be changed alone.
        """
        values = dict(values)
        if "flow_priorities" in values:
            values["flow_priorities"] = {**self.flow_priorities, **values["flow_priorities"]}
        return replace(self, **values)


@dataclass
class FieldSpec:
    """
    Validation rule for one config field.

    Attributes:
        kind: "float", "int", "bool", "choice" or "weights".
        minimum: Lower bound, or None.
        maximum: Upper bound, or None.
        min_exclusive: True if ``minimum`` itself is invalid.
        choices: Allowed values for "choice" fields, or the known keys of
            "weights" fields.
    """

    kind: str
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    min_exclusive: bool = False
    choices: Tuple[str, ...] = ()

    def validate(self, value: Any) -> Tuple[bool, Any]:
        """
        Check ``value`` against this rule.

        Returns:
            (valid, coerced value).
        """
        if self.kind == "bool":
            return isinstance(value, bool), value

        if self.kind == "choice":
            if isinstance(value, Enum):
                value = value.value
            return isinstance(value, str) and value in self.choices, value

        if self.kind == "weights":
            return self._validate_weights(value)

        # bool is an int subclass; never accept it as a number
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False, value
        if value != value:  # NaN
            return False, value
        if self.kind == "int":
            if isinstance(value, float) and not value.is_integer():
                return False, value
            value = int(value)

        if self.minimum is not None:
            if self.min_exclusive and value <= self.minimum:
                return False, value
            if not self.min_exclusive and value < self.minimum:
                return False, value
        if self.maximum is not None and value > self.maximum:
            return False, value
        return True, value

    def _validate_weights(self, value: Any) -> Tuple[bool, Any]:
        # Known keys with in-range weights survive; the field is valid if any does
        if not isinstance(value, Mapping):
            return False, value
        number = FieldSpec("float", self.minimum, self.maximum)
        weights = {}
        for key, weight in value.items():
            if key in self.choices and number.validate(weight)[0]:
                weights[key] = weight
        return bool(weights), weights


FIELD_SPECS: Dict[str, FieldSpec] = {
    "curvature": FieldSpec("float", 0, 1),
    "min_curvature": FieldSpec("float", 0, 1),
    "max_curvature": FieldSpec("float", 0, 1),
    "curvature_step": FieldSpec("float", 0, 0.1, min_exclusive=True),
    "link_separation": FieldSpec("float", 0, 0.2, min_exclusive=True),
    "group_separation": FieldSpec("float", 0, 0.2, min_exclusive=True),
    "separation_multiplier": FieldSpec("float", 0, 3, min_exclusive=True),
    "avoidance_radius": FieldSpec("float", 0, 0.3),
    "avoidance_strength": FieldSpec("float", 0, 2),
    "avoidance_decay": FieldSpec("float", 0, 1),
    "performance_mode": FieldSpec("choice", choices=PERFORMANCE_MODES),
    "visual_quality": FieldSpec("choice", choices=VISUAL_QUALITY_LEVELS),
    "routing_algorithm": FieldSpec("choice", choices=tuple(RoutingAlgorithm.names())),
    "max_calculation_time": FieldSpec("float", 0, 5000, min_exclusive=True),
    "fallback_threshold": FieldSpec("float", 0, 10000, min_exclusive=True),
    "max_iterations": FieldSpec("int", 0, 200, min_exclusive=True),
    "sample_points": FieldSpec("int", 2, 200),
    "render_samples": FieldSpec("int", 2, 500),
    "adaptive_curvature": FieldSpec("bool"),
    "enable_routing": FieldSpec("bool"),
    "auto_optimization": FieldSpec("bool"),
    "smart_avoidance": FieldSpec("bool"),
    "flow_priorities": FieldSpec(
        "weights", 0, MAX_FLOW_PRIORITY, choices=tuple(FLOW_TYPE_WEIGHTS)
    ),
}

VISUAL_QUALITY_PRESETS: Dict[str, Dict[str, Any]] = {
    "fast": {
        "visual_quality": "fast",
        "performance_mode": "fast",
        "max_iterations": 25,
        "sample_points": 10,
        "render_samples": 30,
    },
    "balanced": {
        "visual_quality": "balanced",
        "performance_mode": "balanced",
        "max_iterations": 50,
        "sample_points": 20,
        "render_samples": 50,
    },
    "high": {
        "visual_quality": "high",
        "performance_mode": "quality",
        "max_iterations": 100,
        "sample_points": 40,
        "render_samples": 100,
    },
}

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def normalize_key(key: str) -> str:
    """Convert a camelCase key to snake_case; snake_case passes through."""
    return _CAMEL_BOUNDARY.sub("_", key).lower()


@dataclass
class ConfigUpdateResult:
    """
    Outcome of a configuration update.

    Attributes:
        updated: True if at least one field changed value.
        accepted: Validated values that were applied (snake_case keys).
        rejected: Keys that failed validation, as given by the caller.
    """

    updated: bool
    accepted: Dict[str, Any] = field(default_factory=dict)
    rejected: List[str] = field(default_factory=list)


def split_config(partial: Optional[Mapping[str, Any]]) -> Tuple[Dict[str, Any], List[str]]:
    """
    Validate a partial configuration field by field.

    Unknown keys are ignored (neither accepted nor rejected).

    Returns:
        (accepted, rejected) where accepted maps snake_case field names to
        coerced values and rejected lists the offending keys.
    """
    accepted: Dict[str, Any] = {}
    rejected: List[str] = []
    for key, value in (partial or {}).items():
        name = normalize_key(key)
        spec = FIELD_SPECS.get(name)
        if spec is None:
            continue
        valid, coerced = spec.validate(value)
        if valid:
            accepted[name] = coerced
        else:
            rejected.append(key)
    return accepted, rejected


def validate_config(partial: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Return only the valid fields of ``partial``, with snake_case keys."""
    accepted, _ = split_config(partial)
    return accepted


def normalize_for_mode(config: RoutingConfig) -> RoutingConfig:
    """Bound max_iterations and max_calculation_time according to the performance mode."""
    if config.performance_mode == "fast":
        return replace(
            config,
            max_iterations=min(config.max_iterations, FAST_MODE_MAX_ITERATIONS),
            max_calculation_time=min(
                config.max_calculation_time, FAST_MODE_MAX_CALCULATION_TIME
            ),
        )
    if config.performance_mode == "quality":
        return replace(
            config,
            max_iterations=max(config.max_iterations, QUALITY_MODE_MIN_ITERATIONS),
            max_calculation_time=max(
                config.max_calculation_time, QUALITY_MODE_MIN_CALCULATION_TIME
            ),
        )
    return config
