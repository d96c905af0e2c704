"""AWS API mock for integration testing.

In-memory implementations of the Lambda, API Gateway v2, IAM, EventBridge
and SNS operations the synchronizer uses, so whole syncs can run without
AWS connectivity.

Key Features:
- In-memory state per account and region
- Real botocore ClientErrors with the services' error codes and statuses
- Recording of every call, to assert on mutations
- Error injection per operation, for throttling and conflict paths
- Small page sizes on request, to exercise pagination

Usage:
    from aws_mock import MockAwsContext

    ctx = MockAwsContext()
    result = await deploy("test", project, glue, config=ctx.config(project), session=ctx.session)

    assert ctx.state.function_names() == ["test-greeting-hello"]
"""

from .clients import (
    MockApiGatewayClient,
    MockEventsClient,
    MockIamClient,
    MockLambdaClient,
    MockSnsClient,
)
from .context import MockAwsContext, MockSession
from .project import reflection_doc, write_project
from .state import MockAwsState, MockCall, client_error

__all__ = [
    "MockApiGatewayClient",
    "MockAwsContext",
    "MockAwsState",
    "MockCall",
    "MockEventsClient",
    "MockIamClient",
    "MockLambdaClient",
    "MockSession",
    "MockSnsClient",
    "client_error",
    "reflection_doc",
    "write_project",
]
