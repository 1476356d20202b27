"""Credential providers.

A provider is anything with an ``async retrieve() -> Credentials`` method.
The client asks its provider once per request, so rotating providers
(environment, temporary credentials) take effect without rebuilding the
client.
"""

import logging
import os
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from s3kit.errors import CredentialsError
from s3kit.models import Credentials

logger = logging.getLogger(__name__)


@runtime_checkable
class CredentialsProvider(Protocol):
    async def retrieve(self) -> Credentials: ...


class StaticProvider:
    """Fixed credentials supplied at construction."""

    def __init__(self, access_key: str = "", secret_key: str = "", session_token: str = "") -> None:
        self._credentials = Credentials(access_key, secret_key, session_token)

    async def retrieve(self) -> Credentials:
        return self._credentials


class EnvAWSProvider:
    """Credentials from AWS_ACCESS_KEY_ID / AWS_SECRET_ACCESS_KEY / AWS_SESSION_TOKEN."""

    async def retrieve(self) -> Credentials:
        return Credentials(
            access_key=os.environ.get("AWS_ACCESS_KEY_ID") or os.environ.get("AWS_ACCESS_KEY", ""),
            secret_key=os.environ.get("AWS_SECRET_ACCESS_KEY") or os.environ.get("AWS_SECRET_KEY", ""),
            session_token=os.environ.get("AWS_SESSION_TOKEN", ""),
        )


class EnvMinioProvider:
    """Credentials from MINIO_ACCESS_KEY / MINIO_SECRET_KEY."""

    async def retrieve(self) -> Credentials:
        return Credentials(
            access_key=os.environ.get("MINIO_ACCESS_KEY", ""),
            secret_key=os.environ.get("MINIO_SECRET_KEY", ""),
        )


class ChainedProvider:
    """Try each provider in order; the first non-empty credentials win.

    Raises:
        CredentialsError: From ``retrieve`` when no provider yields both an
            access key and a secret key.
    """

    def __init__(self, providers: Sequence[CredentialsProvider]) -> None:
        if not providers:
            raise CredentialsError("ChainedProvider needs at least one provider.")
        self._providers = list(providers)

    async def retrieve(self) -> Credentials:
        for provider in self._providers:
            credentials = await provider.retrieve()
            if credentials.access_key and credentials.secret_key:
                logger.debug("Using credentials from %s", type(provider).__name__)
                return credentials
        raise CredentialsError("No credentials found in any of the chained providers.")
