"""Policy statements granting accounts and workspace roles access to shared data."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Iterable

from ..config import StepSettings
from .models import AccessPolicyDocument, PolicyStatement
from .updater import LockedPolicyUpdater, granting, revoking

logger = logging.getLogger(__name__)

KMS_WORKSPACE_ACTIONS = [
    "kms:Encrypt",
    "kms:Decrypt",
    "kms:ReEncrypt*",
    "kms:GenerateDataKey*",
    "kms:DescribeKey",
]


async def _all_settled(*updates: Awaitable[Any]) -> None:
    """Await every update, then raise the first failure."""
    results = await asyncio.gather(*updates, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result


def account_root_arn(account_id: str) -> str:
    return f"arn:aws:iam::{account_id}:root"


def artifacts_statement(bucket: str, account_id: str) -> PolicyStatement:
    return PolicyStatement(
        sid=f"accessId:{account_id}",
        principal={"AWS": []},
        action=["s3:GetObject", "s3:PutObject", "s3:GetObjectAcl"],
        resource=f"arn:aws:s3:::{bucket}/*",
    )


def list_prefix_statement(bucket: str, prefix: str) -> PolicyStatement:
    return PolicyStatement(
        sid=f"List:{prefix}",
        principal={"AWS": []},
        action="s3:ListBucket",
        resource=f"arn:aws:s3:::{bucket}",
        condition={"StringLike": {"s3:prefix": [f"{prefix}*"]}},
    )


def get_prefix_statement(bucket: str, prefix: str) -> PolicyStatement:
    return PolicyStatement(
        sid=f"Get:{prefix}",
        principal={"AWS": []},
        action="s3:GetObject",
        resource=f"arn:aws:s3:::{bucket}/{prefix}*",
    )


def kms_workspace_statement(sid: str) -> PolicyStatement:
    return PolicyStatement(
        sid=sid,
        principal={"AWS": []},
        action=list(KMS_WORKSPACE_ACTIONS),
        resource="*",
    )


class DataAccessManager:
    """Grants and revokes access on the artifacts bucket, the study bucket and its KMS key."""

    def __init__(self, updater: LockedPolicyUpdater, settings: StepSettings) -> None:
        self.updater = updater
        self.settings = settings

    async def grant_artifacts_access(self, account_id: str) -> AccessPolicyDocument:
        bucket = self.settings.artifacts_bucket_name
        return await self.updater.grant_principal(
            bucket,
            f"accessId:{account_id}",
            account_root_arn(account_id),
            lambda: artifacts_statement(bucket, account_id),
        )

    async def grant_study_access(self, role_arn: str, prefixes: Iterable[str]) -> None:
        """Add ``role_arn`` to the study bucket and KMS key policies."""
        bucket = self.settings.study_data_bucket_name
        mutations = {}
        for prefix in prefixes:
            mutations[f"List:{prefix}"] = granting(
                role_arn, lambda p=prefix: list_prefix_statement(bucket, p)
            )
            mutations[f"Get:{prefix}"] = granting(
                role_arn, lambda p=prefix: get_prefix_statement(bucket, p)
            )
        sid = self.settings.study_data_kms_policy_workspace_sid

        await _all_settled(
            self.updater.update_statements(bucket, mutations),
            self.updater.update(
                self.settings.kms_key_alias,
                sid,
                granting(role_arn, lambda: kms_workspace_statement(sid)),
            ),
        )
        logger.info(f"Granted study access to {role_arn} on {len(mutations) // 2} prefixes")

    async def revoke_study_access(self, role_arn: str, prefixes: Iterable[str]) -> None:
        """Remove ``role_arn`` from the study bucket and KMS key policies."""
        bucket = self.settings.study_data_bucket_name
        mutations = {}
        for prefix in prefixes:
            mutations[f"List:{prefix}"] = revoking(role_arn)
            mutations[f"Get:{prefix}"] = revoking(role_arn)

        await _all_settled(
            self.updater.update_statements(bucket, mutations),
            self.updater.update(
                self.settings.kms_key_alias,
                self.settings.study_data_kms_policy_workspace_sid,
                revoking(role_arn),
            ),
        )
        logger.info(f"Revoked study access from {role_arn}")
