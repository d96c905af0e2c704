"""Tests for cross-service reference resolution."""

import logging
from pathlib import Path

import pytest
from aws_mock import MockAwsContext

from lambdasync.config import ConfigurationError
from lambdasync.models import BaseUrlReference
from lambdasync.resolver import Resolver


class TestResolver:
    """Tests for Resolver."""

    @pytest.mark.asyncio
    async def test_base_url(self, aws: MockAwsContext, tmp_path: Path) -> None:
        """Test that a service's base URL is its API endpoint with a trailing slash."""
        api_id = aws.state.seed_api("dev-billing")
        resolver = Resolver(aws.provider(aws.config(tmp_path)))

        url = await resolver.get_base_url("dev", "billing")

        assert url == f"https://{api_id}.execute-api.{aws.region}.amazonaws.com/"

    @pytest.mark.asyncio
    async def test_other_environment_not_visible(
        self, aws: MockAwsContext, tmp_path: Path
    ) -> None:
        aws.state.seed_api("prod-billing")
        resolver = Resolver(aws.provider(aws.config(tmp_path)))

        assert await resolver.get_base_url("dev", "billing") is None

    @pytest.mark.asyncio
    async def test_endpoints_cached(self, aws: MockAwsContext, tmp_path: Path) -> None:
        """Test that APIs are listed once per environment."""
        aws.state.seed_api("dev-billing")
        resolver = Resolver(aws.provider(aws.config(tmp_path)))

        await resolver.get_base_url("dev", "billing")
        await resolver.get_base_url("dev", "shipping")

        assert len(aws.state.calls_to("get_apis")) == 1

    @pytest.mark.asyncio
    async def test_resolve_environment(self, aws: MockAwsContext, tmp_path: Path) -> None:
        """Test that literals pass through and references become URLs."""
        api_id = aws.state.seed_api("dev-billing")
        resolver = Resolver(aws.provider(aws.config(tmp_path)))

        env = await resolver.resolve_environment(
            {"MODE": "live", "BILLING_URL": BaseUrlReference(base_url="billing")}, "dev"
        )

        assert env == {
            "MODE": "live",
            "BILLING_URL": f"https://{api_id}.execute-api.{aws.region}.amazonaws.com/",
        }

    @pytest.mark.asyncio
    async def test_unresolved_references(
        self, aws: MockAwsContext, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test that every unresolved key is warned about and reported together."""
        resolver = Resolver(aws.provider(aws.config(tmp_path)))

        with caplog.at_level(logging.WARNING, logger="lambdasync.resolver"):
            with pytest.raises(ConfigurationError) as exc_info:
                await resolver.resolve_environment(
                    {
                        "B_URL": BaseUrlReference(base_url="b"),
                        "A_URL": BaseUrlReference(base_url="a"),
                    },
                    "dev",
                )

        assert str(exc_info.value) == "Unresolved environment references: A_URL, B_URL"
        assert len([r for r in caplog.records if r.levelno == logging.WARNING]) == 2
