"""provflow: resumable provisioning workflows driven by wait decisions."""

from .config import ProvflowConfig, StepSettings, load_config
from .contracts import TickMessage, WaitDecision, WaitDecisionBuilder
from .dispatch import WorkflowLauncher
from .execute import StepWorker
from .locks import get_lock_service
from .persistence import get_repository
from .registry import StepRegistry, default_registry
from .scheduler import StepRunner
from .services import StepServices
from .state import Payload, StepState
from .steps import DeleteEnvironment, ProvisionAccount, ProvisionEnvironment, Step
from .transports import get_transport

__version__ = "0.1.0"
__all__ = [
    "DeleteEnvironment",
    "Payload",
    "ProvflowConfig",
    "ProvisionAccount",
    "ProvisionEnvironment",
    "Step",
    "StepRegistry",
    "StepRunner",
    "StepServices",
    "StepSettings",
    "StepState",
    "StepWorker",
    "TickMessage",
    "WaitDecision",
    "WaitDecisionBuilder",
    "WorkflowLauncher",
    "default_registry",
    "get_lock_service",
    "get_repository",
    "get_transport",
    "load_config",
]
