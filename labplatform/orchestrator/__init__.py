from .repository import RequestRepository
from .runner import ProvisioningRunner
from .service import RequestOrchestrator
from .state_machine import ALLOWED_TRANSITIONS, can_transition, ensure_transition

__all__ = [
    "RequestRepository",
    "ProvisioningRunner",
    "RequestOrchestrator",
    "ALLOWED_TRANSITIONS",
    "can_transition",
    "ensure_transition",
]
