"""Local AWS credential resolution.

Credentials come from the standard environment variables when they are
present, otherwise from a named profile. The profile defaults to the
environment name being deployed, falling back to ``default``, so one
credentials file can hold a section per environment. Profiles are loaded by
botocore, which also covers ``~/.aws/config`` profiles, SSO,
``credential_process`` and ``role_arn`` chains.

Sessions are held by a CredentialResolver instance and built at most once
per profile and region; create one resolver per process and pass it to
whatever needs a session.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import boto3
import botocore.session
from botocore.exceptions import BotoCoreError

logger = logging.getLogger(__name__)

DEFAULT_PROFILE = "default"


class CredentialsError(Exception):
    """Raised when no usable AWS credentials can be found."""

    pass


def environment_has_credentials() -> bool:
    return bool(os.environ.get("AWS_ACCESS_KEY_ID") and os.environ.get("AWS_SECRET_ACCESS_KEY"))


class CredentialResolver:
    """Read-through cache of boto3 sessions keyed by profile and region."""

    def __init__(
        self, credentials_file: Path | None = None, config_file: Path | None = None
    ) -> None:
        self._credentials_file = credentials_file
        self._config_file = config_file
        self._sessions: dict[tuple[str, str | None], boto3.Session] = {}

    def _botocore_session(self) -> botocore.session.Session:
        session = botocore.session.Session()
        if self._credentials_file is not None:
            session.set_config_variable("credentials_file", str(self._credentials_file))
        if self._config_file is not None:
            session.set_config_variable("config_file", str(self._config_file))
        return session

    def _profile_name(self, profile: str) -> str | None:
        """Profile to load, or None to use the environment variables."""
        if environment_has_credentials():
            return None
        available = boto3.Session(botocore_session=self._botocore_session()).available_profiles
        if profile in available:
            return profile
        if DEFAULT_PROFILE in available:
            return DEFAULT_PROFILE
        raise CredentialsError(
            f"No AWS credentials in environment and neither profile [{profile}] "
            f"nor [{DEFAULT_PROFILE}] is configured"
        )

    def session(self, profile: str, region: str | None = None) -> boto3.Session:
        """Session for ``profile``, built on first use.

        Args:
            profile: Profile to use when the environment holds no credentials.
            region: Explicit region, taking precedence over every other source.

        Raises:
            CredentialsError: If no credentials or no region can be resolved.
        """
        key = (profile, region)
        if key in self._sessions:
            return self._sessions[key]

        profile_name = self._profile_name(profile)
        region = region or os.environ.get("AWS_REGION")
        try:
            session = boto3.Session(
                botocore_session=self._botocore_session(),
                profile_name=profile_name,
                region_name=region,
            )
            credentials = session.get_credentials()
        except BotoCoreError as e:
            raise CredentialsError(
                f"Failed to load AWS credentials for profile [{profile_name}]: {e}"
            ) from e
        if credentials is None:
            raise CredentialsError(f"No AWS credentials found for profile [{profile_name}]")
        if not session.region_name:
            raise CredentialsError(f"No AWS region configured for profile [{profile_name}]")

        logger.info(
            "Using AWS credentials",
            extra={
                "profile": profile_name,
                "source": credentials.method,
                "region": session.region_name,
            },
        )
        self._sessions[key] = session
        return session
