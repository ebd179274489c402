"""Data models for the error-handling core."""

from studybuddy.models.layers import LAYERS, SYSTEM_LAYER, PipelineLayer, get_layer, layer_name
from studybuddy.models.correlation import (
    ErrorCorrelation,
    RecoveryAttempt,
    ResolutionStrategy,
    SystemState,
)

__all__ = [
    "LAYERS",
    "SYSTEM_LAYER",
    "PipelineLayer",
    "get_layer",
    "layer_name",
    "ErrorCorrelation",
    "RecoveryAttempt",
    "ResolutionStrategy",
    "SystemState",
]
