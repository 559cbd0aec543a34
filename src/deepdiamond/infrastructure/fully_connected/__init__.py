from ._fully_connected import (
    FullyConnectedBlueprint,
    FullyConnectedInference,
    FullyConnectedTraining,
    default_alpha,
)

__all__ = [
    "FullyConnectedBlueprint",
    "FullyConnectedInference",
    "FullyConnectedTraining",
    "default_alpha",
]
