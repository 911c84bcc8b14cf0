"""Resource policy documents and the locked updater that edits them."""

from .access import DataAccessManager, account_root_arn
from .models import AccessPolicyDocument, PolicyStatement
from .updater import LockedPolicyUpdater, policy_lock_key

__all__ = [
    "AccessPolicyDocument",
    "DataAccessManager",
    "LockedPolicyUpdater",
    "PolicyStatement",
    "account_root_arn",
    "policy_lock_key",
]
