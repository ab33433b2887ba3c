"""
Pipeline agent orchestrators.
"""

from .auditor import Auditor
from .base import BaseOrchestrator
from .call_logger import CallLogger, build_result_message
from .dispatcher import Dispatcher
from .estimator import Estimator
from .gatekeeper import Gatekeeper

__all__ = [
    "Auditor",
    "BaseOrchestrator",
    "CallLogger",
    "Dispatcher",
    "Estimator",
    "Gatekeeper",
    "build_result_message",
]
