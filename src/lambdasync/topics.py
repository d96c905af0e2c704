"""SNS topics and lambda subscriptions for event-triggered functions.

Topics are named per environment and (topic, event type), so functions in
several services may subscribe to the same topic. Topics and subscriptions
of functions that are no longer declared are left in place.
"""

from __future__ import annotations

import asyncio
import logging

from .models import FRAMEWORK_TAG, DeclaredFunction, EventTrigger, FunctionRef
from .provenance import ChangeLog, ChangeType
from .provider import SUBSCRIPTION, TOPIC, NotFoundError, ResourceProvider
from .scope import Scope

logger = logging.getLogger(__name__)


class TopicReconciler:
    """Ensures each declared event function has its topic and a subscription to it."""

    def __init__(
        self,
        provider: ResourceProvider,
        scope: Scope,
        changes: ChangeLog,
        region: str,
        account: str,
    ) -> None:
        self._provider = provider
        self._scope = scope
        self._changes = changes
        self._region = region
        self._account = account

    def topic_arn(self, topic_name: str) -> str:
        return f"arn:aws:sns:{self._region}:{self._account}:{topic_name}"

    async def sync(self, declared: list[DeclaredFunction], functions: list[FunctionRef]) -> None:
        function_arns = {ref.name: ref.id for ref in functions}
        subscriptions: list[tuple[str, str, str]] = []
        for fn in declared:
            if isinstance(fn.trigger, EventTrigger) and fn.name in function_arns:
                topic_name = self._scope.topic_name(fn.trigger.topic, fn.trigger.type)
                subscriptions.append((fn.name, topic_name, function_arns[fn.name]))

        topic_names = list(dict.fromkeys(topic for _, topic, _ in subscriptions))
        await asyncio.gather(*(self._ensure_topic(topic) for topic in topic_names))
        await asyncio.gather(
            *(
                self._ensure_subscription(name, topic, function_arn)
                for name, topic, function_arn in subscriptions
            )
        )

    async def _ensure_topic(self, topic_name: str) -> None:
        try:
            await self._provider.call(
                "sns",
                "get_topic_attributes",
                "Error getting topic.",
                TopicArn=self.topic_arn(topic_name),
            )
            return
        except NotFoundError:
            pass
        await self._changes.apply(
            ChangeType.CREATE,
            "topic",
            topic_name,
            self._provider.create_resource(
                TOPIC,
                "Error creating topic.",
                Name=topic_name,
                Tags=[
                    {"Key": "framework", "Value": FRAMEWORK_TAG},
                    {"Key": "environment", "Value": self._scope.environment},
                ],
            ),
        )

    async def _ensure_subscription(self, name: str, topic_name: str, function_arn: str) -> None:
        topic_arn = self.topic_arn(topic_name)
        async for subscription in self._provider.paginate(
            SUBSCRIPTION, "Error listing subscriptions.", TopicArn=topic_arn
        ):
            if (subscription.get("Protocol"), subscription.get("Endpoint")) == (
                "lambda",
                function_arn,
            ):
                return
        await self._changes.apply(
            ChangeType.CREATE,
            "subscription",
            name,
            self._provider.create_resource(
                SUBSCRIPTION,
                "Error subscribing to topic.",
                TopicArn=topic_arn,
                Protocol="lambda",
                Endpoint=function_arn,
                ReturnSubscriptionArn=True,
            ),
            detail=topic_name,
        )
