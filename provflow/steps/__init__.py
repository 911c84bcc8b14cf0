"""Built-in provisioning steps."""

from .base import START, Step, StepResult
from .delete_environment import DeleteEnvironment
from .provision_account import ProvisionAccount
from .provision_environment import ProvisionEnvironment

BUILTIN_STEPS = (ProvisionAccount, ProvisionEnvironment, DeleteEnvironment)

__all__ = [
    "BUILTIN_STEPS",
    "DeleteEnvironment",
    "ProvisionAccount",
    "ProvisionEnvironment",
    "START",
    "Step",
    "StepResult",
]
