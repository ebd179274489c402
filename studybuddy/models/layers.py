"""Pipeline layer definitions.

A request passes through five conceptual stages. Every classified error,
monitoring event and health metric is keyed by one of these layer numbers
(0 is reserved for system-wide events in the event log).
"""

from dataclasses import dataclass
from typing import Dict

from studybuddy.exceptions import InvalidLayerError


@dataclass(frozen=True)
class PipelineLayer:
    """Static description of one pipeline stage."""
    number: int
    name: str
    description: str
    max_recovery_attempts: int
    estimated_resolution: str


LAYERS: Dict[int, PipelineLayer] = {
    1: PipelineLayer(
        number=1,
        name="Input Validation & Preprocessing",
        description="Validates and sanitises user input before processing",
        max_recovery_attempts=3,
        estimated_resolution="30 seconds",
    ),
    2: PipelineLayer(
        number=2,
        name="Context & Memory Management",
        description="Builds conversation context and retrieves memories",
        max_recovery_attempts=2,
        estimated_resolution="1 minute",
    ),
    3: PipelineLayer(
        number=3,
        name="Response Validation & Fact-Checking",
        description="Validates generated responses and checks facts",
        max_recovery_attempts=2,
        estimated_resolution="2 minutes",
    ),
    4: PipelineLayer(
        number=4,
        name="User Feedback & Learning",
        description="Processes feedback and adapts to user preferences",
        max_recovery_attempts=2,
        estimated_resolution="30 seconds",
    ),
    5: PipelineLayer(
        number=5,
        name="Quality Assurance & Monitoring",
        description="Runs quality checks and monitors system performance",
        max_recovery_attempts=1,
        estimated_resolution="1 minute",
    ),
}

SYSTEM_LAYER = 0


def get_layer(layer: int) -> PipelineLayer:
    """Return the layer definition, raising InvalidLayerError outside 1..5."""
    if isinstance(layer, bool) or not isinstance(layer, int) or layer not in LAYERS:
        raise InvalidLayerError(layer)
    return LAYERS[layer]


def layer_name(layer: int) -> str:
    if layer == SYSTEM_LAYER:
        return "System"
    return get_layer(layer).name
