"""Mock boto3 clients for the services the synchronizer talks to.

Each client implements only the operations in use, with the request and
response shapes of the real service and the same error codes. Failures are
raised as botocore ClientErrors so the provider's error classification is
exercised unchanged.
"""

from __future__ import annotations

import base64
import copy
import hashlib
import json
from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

from .state import MockAwsState, client_error

F = TypeVar("F", bound=Callable[..., Any])

DEFAULT_PAGE_SIZE = 50


def operation(fn: F) -> F:
    """Record the call, raise injected errors, and run it under the state lock."""

    @wraps(fn)
    def wrapper(self: MockClient, **params: Any) -> Any:
        self.state.record(self.service, fn.__name__, params)
        with self.state.lock:
            return fn(self, **params)

    return wrapper  # type: ignore[return-value]


def paged(items: list[Any], token: str | None, page_size: int) -> tuple[list[Any], str | None]:
    start = int(token) if token else 0
    end = start + page_size
    return items[start:end], (str(end) if end < len(items) else None)


class MockClient:
    service = ""

    def __init__(self, state: MockAwsState, page_size: int = DEFAULT_PAGE_SIZE) -> None:
        self.state = state
        self.page_size = page_size

    def _error(self, operation_name: str, code: str, status_code: int, message: str = "") -> Any:
        return client_error(operation_name, code, status_code, message)


class MockLambdaClient(MockClient):
    service = "lambda"

    def _function(self, operation_name: str, name: str) -> dict[str, Any]:
        function = self.state.find_function(name)
        if function is None:
            raise self._error(
                operation_name, "ResourceNotFoundException", 404, f"Function not found: {name}"
            )
        return function

    @operation
    def list_functions(self, Marker: str | None = None) -> dict[str, Any]:
        page, marker = paged(self.state.functions, Marker, self.page_size)
        response: dict[str, Any] = {"Functions": copy.deepcopy(page)}
        if marker:
            response["NextMarker"] = marker
        return response

    @operation
    def create_function(self, **params: Any) -> dict[str, Any]:
        name = params["FunctionName"]
        if self.state.find_function(name) is not None:
            raise self._error(
                "CreateFunction", "ResourceConflictException", 409, f"Function exists: {name}"
            )
        if self.state.unassumable_role_attempts > 0:
            self.state.unassumable_role_attempts -= 1
            raise self._error(
                "CreateFunction",
                "InvalidParameterValueException",
                400,
                "The role defined for the function cannot be assumed by Lambda.",
            )
        zipped = params["Code"]["ZipFile"]
        function = {
            "FunctionName": name,
            "FunctionArn": self.state.function_arn(name),
            "Runtime": params["Runtime"],
            "Role": params["Role"],
            "Handler": params["Handler"],
            "MemorySize": params["MemorySize"],
            "Timeout": params["Timeout"],
            "Environment": copy.deepcopy(params.get("Environment", {"Variables": {}})),
            "Architectures": list(params.get("Architectures", ["x86_64"])),
            "CodeSha256": base64.b64encode(hashlib.sha256(zipped).digest()).decode("ascii"),
            "CodeSize": len(zipped),
            "TracingConfig": params.get("TracingConfig", {"Mode": "PassThrough"}),
        }
        self.state.functions.append(function)
        self.state.function_code[name] = zipped
        self.state.function_tags[function["FunctionArn"]] = dict(params.get("Tags", {}))
        return copy.deepcopy(function)

    @operation
    def update_function_code(
        self, FunctionName: str, ZipFile: bytes, Architectures: list[str] | None = None
    ) -> dict[str, Any]:
        function = self._function("UpdateFunctionCode", FunctionName)
        function["CodeSha256"] = base64.b64encode(hashlib.sha256(ZipFile).digest()).decode(
            "ascii"
        )
        function["CodeSize"] = len(ZipFile)
        if Architectures:
            function["Architectures"] = list(Architectures)
        self.state.function_code[function["FunctionName"]] = ZipFile
        return copy.deepcopy(function)

    @operation
    def update_function_configuration(self, FunctionName: str, **params: Any) -> dict[str, Any]:
        function = self._function("UpdateFunctionConfiguration", FunctionName)
        for key in ("Role", "Runtime", "Handler", "Timeout", "MemorySize", "TracingConfig"):
            if key in params:
                function[key] = params[key]
        if "Environment" in params:
            function["Environment"] = copy.deepcopy(params["Environment"])
        return copy.deepcopy(function)

    @operation
    def delete_function(self, FunctionName: str) -> dict[str, Any]:
        function = self._function("DeleteFunction", FunctionName)
        self.state.functions.remove(function)
        self.state.function_tags.pop(function["FunctionArn"], None)
        # Permissions go with the function unless a duplicate still uses the name
        if self.state.find_function(function["FunctionName"]) is None:
            self.state.policies.pop(function["FunctionName"], None)
        return {}

    @operation
    def list_tags(self, Resource: str) -> dict[str, Any]:
        function = self._function("ListTags", Resource)
        return {"Tags": dict(self.state.function_tags.get(function["FunctionArn"], {}))}

    @operation
    def get_policy(self, FunctionName: str) -> dict[str, Any]:
        function = self._function("GetPolicy", FunctionName)
        statements = self.state.policies.get(function["FunctionName"])
        if not statements:
            raise self._error(
                "GetPolicy", "ResourceNotFoundException", 404, "No policy found"
            )
        return {
            "Policy": json.dumps(
                {"Version": "2012-10-17", "Id": "default", "Statement": copy.deepcopy(statements)}
            ),
            "RevisionId": self.state.next_id("rev"),
        }

    @operation
    def add_permission(
        self,
        FunctionName: str,
        StatementId: str,
        Action: str,
        Principal: str,
        SourceArn: str | None = None,
    ) -> dict[str, Any]:
        function = self._function("AddPermission", FunctionName)
        statements = self.state.policies.setdefault(function["FunctionName"], [])
        if any(s["Sid"] == StatementId for s in statements):
            raise self._error(
                "AddPermission", "ResourceConflictException", 409, "Statement id exists"
            )
        statement: dict[str, Any] = {
            "Sid": StatementId,
            "Effect": "Allow",
            "Principal": {"Service": Principal},
            "Action": Action,
            "Resource": function["FunctionArn"],
        }
        if SourceArn:
            statement["Condition"] = {"ArnLike": {"AWS:SourceArn": SourceArn}}
        statements.append(statement)
        return {"Statement": json.dumps(statement)}

    @operation
    def remove_permission(self, FunctionName: str, StatementId: str) -> dict[str, Any]:
        function = self._function("RemovePermission", FunctionName)
        statements = self.state.policies.get(function["FunctionName"], [])
        for statement in statements:
            if statement["Sid"] == StatementId:
                statements.remove(statement)
                return {}
        raise self._error("RemovePermission", "ResourceNotFoundException", 404, "No policy found")


class MockApiGatewayClient(MockClient):
    service = "apigatewayv2"

    def _api(self, operation_name: str, api_id: str) -> dict[str, Any]:
        if api_id not in self.state.apis:
            raise self._error(
                operation_name, "NotFoundException", 404, f"Invalid API identifier {api_id}"
            )
        return self.state.apis[api_id]

    @staticmethod
    def _response(item: dict[str, Any]) -> dict[str, Any]:
        return copy.deepcopy(item)

    @operation
    def get_apis(self, NextToken: str | None = None) -> dict[str, Any]:
        page, token = paged(list(self.state.apis.values()), NextToken, self.page_size)
        response: dict[str, Any] = {"Items": copy.deepcopy(page)}
        if token:
            response["NextToken"] = token
        return response

    @operation
    def create_api(self, **params: Any) -> dict[str, Any]:
        api_id = self.state.seed_api(params["Name"], params.get("CorsConfiguration"))
        api = self.state.apis[api_id]
        api["Tags"] = dict(params.get("Tags", {}))
        return self._response(api)

    @operation
    def update_api(self, ApiId: str, **params: Any) -> dict[str, Any]:
        api = self._api("UpdateApi", ApiId)
        if "Name" in params:
            api["Name"] = params["Name"]
        if "CorsConfiguration" in params:
            api["CorsConfiguration"] = copy.deepcopy(params["CorsConfiguration"])
        return self._response(api)

    @operation
    def create_stage(self, ApiId: str, StageName: str, **params: Any) -> dict[str, Any]:
        self._api("CreateStage", ApiId)
        stages = self.state.stages.setdefault(ApiId, {})
        if StageName in stages:
            raise self._error(
                "CreateStage", "ConflictException", 409, f"Stage {StageName} already exists"
            )
        stages[StageName] = {
            "StageName": StageName,
            "AutoDeploy": params.get("AutoDeploy", False),
            "Tags": dict(params.get("Tags", {})),
        }
        return self._response(stages[StageName])

    @operation
    def get_stage(self, ApiId: str, StageName: str) -> dict[str, Any]:
        self._api("GetStage", ApiId)
        stage = self.state.stages.get(ApiId, {}).get(StageName)
        if stage is None:
            raise self._error(
                "GetStage", "NotFoundException", 404, f"Invalid stage identifier {StageName}"
            )
        return self._response(stage)

    @operation
    def get_integrations(self, ApiId: str, NextToken: str | None = None) -> dict[str, Any]:
        self._api("GetIntegrations", ApiId)
        page, token = paged(self.state.integrations[ApiId], NextToken, self.page_size)
        response: dict[str, Any] = {"Items": copy.deepcopy(page)}
        if token:
            response["NextToken"] = token
        return response

    @operation
    def create_integration(self, ApiId: str, **definition: Any) -> dict[str, Any]:
        self._api("CreateIntegration", ApiId)
        integration_id = self.state.seed_integration(ApiId, definition)
        integration = self.state.integrations[ApiId][-1]
        return self._response(integration | {"IntegrationId": integration_id})

    @operation
    def update_integration(
        self, ApiId: str, IntegrationId: str, **definition: Any
    ) -> dict[str, Any]:
        self._api("UpdateIntegration", ApiId)
        for integration in self.state.integrations[ApiId]:
            if integration["IntegrationId"] == IntegrationId:
                integration.update(definition)
                return self._response(integration)
        raise self._error(
            "UpdateIntegration", "NotFoundException", 404, "Invalid integration identifier"
        )

    @operation
    def delete_integration(self, ApiId: str, IntegrationId: str) -> dict[str, Any]:
        self._api("DeleteIntegration", ApiId)
        target = f"integrations/{IntegrationId}"
        if any(route["Target"] == target for route in self.state.routes[ApiId]):
            raise self._error(
                "DeleteIntegration",
                "ConflictException",
                409,
                "Cannot delete an integration that is referenced by a route",
            )
        for integration in self.state.integrations[ApiId]:
            if integration["IntegrationId"] == IntegrationId:
                self.state.integrations[ApiId].remove(integration)
                return {}
        raise self._error(
            "DeleteIntegration", "NotFoundException", 404, "Invalid integration identifier"
        )

    @operation
    def get_routes(self, ApiId: str, NextToken: str | None = None) -> dict[str, Any]:
        self._api("GetRoutes", ApiId)
        page, token = paged(self.state.routes[ApiId], NextToken, self.page_size)
        response: dict[str, Any] = {"Items": copy.deepcopy(page)}
        if token:
            response["NextToken"] = token
        return response

    @operation
    def create_route(self, ApiId: str, RouteKey: str, Target: str, **params: Any) -> dict[str, Any]:
        self._api("CreateRoute", ApiId)
        if any(route["RouteKey"] == RouteKey for route in self.state.routes[ApiId]):
            raise self._error(
                "CreateRoute", "ConflictException", 409, f"Route {RouteKey} already exists"
            )
        integration_id = Target.removeprefix("integrations/")
        route_id = self.state.seed_route(ApiId, RouteKey, integration_id)
        route = self.state.routes[ApiId][-1]
        route["AuthorizationType"] = params.get("AuthorizationType", "NONE")
        route["ApiKeyRequired"] = params.get("ApiKeyRequired", False)
        return self._response(route | {"RouteId": route_id})

    @operation
    def update_route(self, ApiId: str, RouteId: str, **params: Any) -> dict[str, Any]:
        self._api("UpdateRoute", ApiId)
        for route in self.state.routes[ApiId]:
            if route["RouteId"] == RouteId:
                route.update(params)
                return self._response(route)
        raise self._error("UpdateRoute", "NotFoundException", 404, "Invalid route identifier")

    @operation
    def delete_route(self, ApiId: str, RouteId: str) -> dict[str, Any]:
        self._api("DeleteRoute", ApiId)
        for route in self.state.routes[ApiId]:
            if route["RouteId"] == RouteId:
                self.state.routes[ApiId].remove(route)
                return {}
        raise self._error("DeleteRoute", "NotFoundException", 404, "Invalid route identifier")


class MockIamClient(MockClient):
    service = "iam"

    @operation
    def get_role(self, RoleName: str) -> dict[str, Any]:
        role = self.state.roles.get(RoleName)
        if role is None:
            raise self._error(
                "GetRole", "NoSuchEntity", 404, f"Role {RoleName} not found"
            )
        return {"Role": copy.deepcopy(role)}

    @operation
    def create_role(
        self, RoleName: str, AssumeRolePolicyDocument: str, **params: Any
    ) -> dict[str, Any]:
        if RoleName in self.state.roles:
            raise self._error(
                "CreateRole", "EntityAlreadyExists", 409, f"Role {RoleName} exists"
            )
        role = {
            "RoleName": RoleName,
            "RoleId": self.state.next_id("AROA"),
            "Arn": f"arn:aws:iam::{self.state.account}:role/{RoleName}",
            "AssumeRolePolicyDocument": json.loads(AssumeRolePolicyDocument),
            "Tags": list(params.get("Tags", [])),
        }
        self.state.roles[RoleName] = role
        return {"Role": copy.deepcopy(role)}

    @operation
    def get_role_policy(self, RoleName: str, PolicyName: str) -> dict[str, Any]:
        document = self.state.role_policies.get((RoleName, PolicyName))
        if document is None:
            raise self._error(
                "GetRolePolicy", "NoSuchEntity", 404, f"Policy {PolicyName} not found"
            )
        # boto3 hands back the URL-decoded document parsed into a dict
        return {
            "RoleName": RoleName,
            "PolicyName": PolicyName,
            "PolicyDocument": copy.deepcopy(document),
        }

    @operation
    def put_role_policy(
        self, RoleName: str, PolicyName: str, PolicyDocument: str
    ) -> dict[str, Any]:
        if RoleName not in self.state.roles:
            raise self._error(
                "PutRolePolicy", "NoSuchEntity", 404, f"Role {RoleName} not found"
            )
        self.state.role_policies[(RoleName, PolicyName)] = json.loads(PolicyDocument)
        return {}


class MockEventsClient(MockClient):
    service = "events"

    def _rule_arn(self, name: str) -> str:
        return f"arn:aws:events:{self.state.region}:{self.state.account}:rule/{name}"

    @operation
    def describe_rule(self, Name: str) -> dict[str, Any]:
        rule = self.state.rules.get(Name)
        if rule is None:
            # EventBridge reports missing rules with a 400
            raise self._error(
                "DescribeRule", "ResourceNotFoundException", 400, f"Rule {Name} does not exist."
            )
        return copy.deepcopy(rule)

    @operation
    def put_rule(
        self, Name: str, ScheduleExpression: str, State: str = "ENABLED", **params: Any
    ) -> dict[str, Any]:
        self.state.rules[Name] = {
            "Name": Name,
            "Arn": self._rule_arn(Name),
            "ScheduleExpression": ScheduleExpression,
            "State": State,
        }
        return {"RuleArn": self._rule_arn(Name)}

    @operation
    def list_targets_by_rule(self, Rule: str) -> dict[str, Any]:
        if Rule not in self.state.rules:
            raise self._error(
                "ListTargetsByRule", "ResourceNotFoundException", 400, f"Rule {Rule} not found"
            )
        return {"Targets": copy.deepcopy(self.state.targets.get(Rule, []))}

    @operation
    def put_targets(self, Rule: str, Targets: list[dict[str, Any]]) -> dict[str, Any]:
        if Rule not in self.state.rules:
            raise self._error(
                "PutTargets", "ResourceNotFoundException", 400, f"Rule {Rule} not found"
            )
        targets = {t["Id"]: t for t in self.state.targets.get(Rule, [])}
        for target in Targets:
            targets[target["Id"]] = dict(target)
        self.state.targets[Rule] = list(targets.values())
        return {"FailedEntryCount": 0, "FailedEntries": []}


class MockSnsClient(MockClient):
    service = "sns"

    def _topic(self, operation_name: str, topic_arn: str) -> dict[str, Any]:
        topic = self.state.topics.get(topic_arn)
        if topic is None:
            raise self._error(operation_name, "NotFound", 404, "Topic does not exist")
        return topic

    @operation
    def get_topic_attributes(self, TopicArn: str) -> dict[str, Any]:
        topic = self._topic("GetTopicAttributes", TopicArn)
        return {"Attributes": copy.deepcopy(topic["Attributes"])}

    @operation
    def create_topic(self, Name: str, **params: Any) -> dict[str, Any]:
        arn = f"arn:aws:sns:{self.state.region}:{self.state.account}:{Name}"
        self.state.topics.setdefault(
            arn,
            {"Attributes": {"TopicArn": arn}, "Tags": list(params.get("Tags", []))},
        )
        return {"TopicArn": arn}

    @operation
    def list_subscriptions_by_topic(
        self, TopicArn: str, NextToken: str | None = None
    ) -> dict[str, Any]:
        self._topic("ListSubscriptionsByTopic", TopicArn)
        page, token = paged(self.state.subscriptions_for(TopicArn), NextToken, self.page_size)
        response: dict[str, Any] = {"Subscriptions": copy.deepcopy(page)}
        if token:
            response["NextToken"] = token
        return response

    @operation
    def subscribe(
        self, TopicArn: str, Protocol: str, Endpoint: str, **params: Any
    ) -> dict[str, Any]:
        self._topic("Subscribe", TopicArn)
        for subscription in self.state.subscriptions_for(TopicArn):
            if (subscription["Protocol"], subscription["Endpoint"]) == (Protocol, Endpoint):
                return {"SubscriptionArn": subscription["SubscriptionArn"]}
        arn = f"{TopicArn}:{self.state.next_id()}"
        self.state.subscriptions.append(
            {
                "SubscriptionArn": arn,
                "Owner": self.state.account,
                "Protocol": Protocol,
                "Endpoint": Endpoint,
                "TopicArn": TopicArn,
            }
        )
        return {"SubscriptionArn": arn}


CLIENTS: dict[str, type[MockClient]] = {
    "lambda": MockLambdaClient,
    "apigatewayv2": MockApiGatewayClient,
    "iam": MockIamClient,
    "events": MockEventsClient,
    "sns": MockSnsClient,
}
