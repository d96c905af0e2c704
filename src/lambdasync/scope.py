"""Deterministic resource naming for an (environment, service) scope.

Every name derived here starts with the environment name, so several
environments and services can share one AWS account without collisions.
"""

from __future__ import annotations

from dataclasses import dataclass

from .models import FRAMEWORK_TAG


@dataclass(frozen=True)
class Scope:
    environment: str
    service: str

    @property
    def prefix(self) -> str:
        """Prefix shared by every per-function resource of the scope."""
        return f"{self.environment}-{self.service}-"

    def function_name(self, name: str) -> str:
        return f"{self.prefix}{name}"

    def rule_name(self, name: str) -> str:
        return f"{self.prefix}{name}"

    def log_group(self, name: str) -> str:
        return f"/aws/lambda/{self.prefix}{name}"

    def topic_name(self, topic: str, event_type: str) -> str:
        # Topics belong to the environment, not the service, so that
        # publishers and subscribers in different services meet
        return f"{self.environment}-{topic}-{event_type}"

    @property
    def api_name(self) -> str:
        return f"{self.environment}-{self.service}"

    @property
    def role_name(self) -> str:
        return f"{self.prefix}role"

    @property
    def policy_name(self) -> str:
        return f"{self.prefix}policy"

    def function_arn(self, region: str, account: str, name: str) -> str:
        return f"arn:aws:lambda:{region}:{account}:function:{self.function_name(name)}"

    def short_name(self, full_name: str) -> str | None:
        """Function name without the scope prefix, or None outside the scope."""
        if not full_name.lower().startswith(self.prefix.lower()):
            return None
        return full_name[len(self.prefix) :]

    def owns(self, tags: dict[str, str]) -> bool:
        """False when ``tags`` name another environment or service."""
        return tags.get("environment", self.environment) == self.environment and tags.get(
            "service", self.service
        ) == self.service

    def tags(self, revision: str | None = None) -> dict[str, str]:
        tags = {
            "framework": FRAMEWORK_TAG,
            "environment": self.environment,
            "service": self.service,
        }
        if revision:
            tags["revision"] = revision
        return tags

    def tag_list(self) -> list[dict[str, str]]:
        """Tags in the Key/Value list shape used by IAM, EventBridge and SNS."""
        return [{"Key": k, "Value": v} for k, v in self.tags().items()]
