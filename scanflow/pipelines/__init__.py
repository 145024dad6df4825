"""
Pipelines package - classification routing and lifecycle sweepers
"""
from scanflow.pipelines.classification import (
    ClassificationRouter,
    Classification,
    CleanResponse,
    NoisyResponse,
    parse_classifier_response,
)
from scanflow.pipelines.sweepers import LifecycleSweepers, SweepReport

__all__ = [
    "ClassificationRouter",
    "Classification",
    "CleanResponse",
    "NoisyResponse",
    "parse_classifier_response",
    "LifecycleSweepers",
    "SweepReport",
]
