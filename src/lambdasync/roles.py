"""The scope's shared Lambda execution role and its inline policy.

The role is created at most once per scope and never deleted. Its inline
policy is always written as a complete document, so whatever was attached
before is replaced rather than merged.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from .models import ExecutionRole, PolicyStatement
from .provenance import ChangeLog, ChangeType
from .provider import ROLE, NotFoundError, ResourceProvider
from .scope import Scope

logger = logging.getLogger(__name__)

POLICY_VERSION = "2012-10-17"

TRUST_POLICY: dict[str, Any] = {
    "Version": POLICY_VERSION,
    "Statement": [
        {
            "Effect": "Allow",
            "Principal": {"Service": "lambda.amazonaws.com"},
            "Action": "sts:AssumeRole",
        }
    ],
}

TABLE_ACTIONS = [
    "dynamodb:CreateTable",
    "dynamodb:BatchGetItem",
    "dynamodb:ConditionCheckItem",
    "dynamodb:PutItem",
    "dynamodb:DeleteItem",
    "dynamodb:GetItem",
    "dynamodb:Scan",
    "dynamodb:Query",
    "dynamodb:UpdateItem",
    "dynamodb:UpdateTable",
    "dynamodb:GetRecords",
    "dax:GetItem",
    "dax:PutItem",
    "dax:ConditionCheckItem",
    "dax:BatchGetItem",
    "dax:BatchWriteItem",
    "dax:DeleteItem",
    "dax:Query",
    "dax:UpdateItem",
    "dax:Scan",
]


def policy_document(
    scope: Scope,
    region: str,
    account: str,
    publish_topics: list[str],
    additional_statements: list[PolicyStatement],
) -> dict[str, Any]:
    """Full inline policy: logs, the scope's tables, publish topics, then extras."""
    statements: list[dict[str, Any]] = [
        {
            "Effect": "Allow",
            "Resource": f"arn:aws:logs:{region}:{account}:*",
            "Action": "logs:CreateLogGroup",
        },
        {
            "Effect": "Allow",
            "Resource": (
                f"arn:aws:logs:{region}:{account}:log-group:/aws/lambda/{scope.prefix}*"
            ),
            "Action": ["logs:CreateLogStream", "logs:PutLogEvents"],
        },
        {
            "Effect": "Allow",
            "Resource": (
                f"arn:aws:dynamodb:{region}:{account}:"
                f"table/{scope.environment}.{scope.service}.*"
            ),
            "Action": list(TABLE_ACTIONS),
        },
    ]
    statements.extend(
        {
            "Effect": "Allow",
            "Action": ["sns:Publish"],
            "Resource": f"arn:aws:sns:{region}:{account}:{scope.environment}-{topic}-*",
        }
        for topic in publish_topics
    )
    statements.extend(
        {
            "Effect": extra.effect,
            "Resource": extra.resource.replace("$REGION", region).replace("$ACCOUNT", account),
            "Action": list(extra.action),
        }
        for extra in additional_statements
    )
    return {"Version": POLICY_VERSION, "Statement": statements}


async def get_role(provider: ResourceProvider, scope: Scope) -> ExecutionRole | None:
    """The scope's execution role, or None when it does not exist yet."""
    try:
        response = await provider.call(
            "iam", "get_role", "Error getting role", RoleName=scope.role_name
        )
    except NotFoundError:
        return None
    role = response["Role"]
    return ExecutionRole(arn=role["Arn"], name=role["RoleName"])


class RoleReconciler:
    """Gets or creates the execution role and keeps its inline policy current."""

    def __init__(self, provider: ResourceProvider, scope: Scope, changes: ChangeLog) -> None:
        self._provider = provider
        self._scope = scope
        self._changes = changes

    async def sync(self, current: ExecutionRole | None) -> str:
        """Return the role ARN, creating the role first when it does not exist."""
        if current is not None:
            return current.arn

        response = await self._changes.apply(
            ChangeType.CREATE,
            "role",
            self._scope.role_name,
            self._provider.create_resource(
                ROLE,
                "Error creating role",
                RoleName=self._scope.role_name,
                AssumeRolePolicyDocument=json.dumps(TRUST_POLICY),
                Tags=self._scope.tag_list(),
            ),
        )
        settle_seconds = self._provider.config.role_settle_seconds
        if settle_seconds > 0:
            # New roles are not assumable by Lambda until IAM has replicated them
            logger.info(f"Waiting {settle_seconds}s for role propagation...")
            await asyncio.sleep(settle_seconds)
        return str(response["Role"]["Arn"])

    async def assign_policy(
        self,
        region: str,
        account: str,
        publish_topics: list[str],
        additional_statements: list[PolicyStatement],
    ) -> None:
        """Write the inline policy unless the attached document is already identical."""
        document = policy_document(
            self._scope, region, account, publish_topics, additional_statements
        )
        if await self._current_policy() == document:
            logger.debug("role policy is up to date")
            return
        await self._changes.apply(
            ChangeType.UPDATE,
            "role policy",
            self._scope.policy_name,
            self._provider.call(
                "iam",
                "put_role_policy",
                "Error assigning policy",
                RoleName=self._scope.role_name,
                PolicyName=self._scope.policy_name,
                PolicyDocument=json.dumps(document),
            ),
        )

    async def _current_policy(self) -> dict[str, Any] | None:
        try:
            response = await self._provider.call(
                "iam",
                "get_role_policy",
                "Error getting role policy",
                RoleName=self._scope.role_name,
                PolicyName=self._scope.policy_name,
            )
        except NotFoundError:
            return None
        document = response.get("PolicyDocument")
        # boto3 decodes the document; a raw string means it was returned verbatim
        if isinstance(document, str):
            return dict(json.loads(document))
        return document
