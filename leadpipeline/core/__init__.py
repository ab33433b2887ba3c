"""
Core pipeline components: stage machine, quote and estimate calculator,
normalization, domain events, the repository boundary and external ports.
"""

from .events import InMemoryEventBus, publish_best_effort
from .pipeline import PipelineStageMachine, TransitionResult

__all__ = [
    "InMemoryEventBus",
    "PipelineStageMachine",
    "TransitionResult",
    "publish_best_effort",
]
