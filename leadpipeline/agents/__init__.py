"""
Agents package for the lead pipeline.

Key components:
- ToolCallTracker / ContextHolder / ToolDependencies: run-scoped state
- FallbackService: deterministic repairs after a run
- Orchestrators: Gatekeeper, Estimator, Dispatcher, Auditor, CallLogger
"""

from .orchestrators import Auditor, CallLogger, Dispatcher, Estimator, Gatekeeper
from .state import ToolCallTracker, ToolDependencies

__all__ = [
    "Auditor",
    "CallLogger",
    "Dispatcher",
    "Estimator",
    "Gatekeeper",
    "ToolCallTracker",
    "ToolDependencies",
]
