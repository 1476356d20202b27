"""Shared pytest fixtures for s3kit tests.

Each test gets a fresh in-memory ``FakeS3`` server. Clients reach it through
``httpx.ASGITransport``, so no sockets are opened. The default client has a
fixed region so that region lookups only happen in tests that ask for them.
"""

import httpx
import pytest
from fake_s3 import FakeS3

from s3kit.client import S3Client
from s3kit.region_cache import BucketRegionCache

ENDPOINT = "localhost:9000"
ACCESS_KEY = "minio"
SECRET_KEY = "minio123"
BUCKET = "test-bucket"


@pytest.fixture
def fake() -> FakeS3:
    """Create a fake S3 server with one empty bucket."""
    server = FakeS3()
    server.create_bucket(BUCKET)
    return server


@pytest.fixture
async def make_client(fake: FakeS3):
    """Factory for clients wired to the fake server.

    Keyword arguments are passed through to ``S3Client``; every client is
    closed when the test finishes.
    """
    clients: list[S3Client] = []

    def factory(**kwargs) -> S3Client:
        kwargs.setdefault("access_key", ACCESS_KEY)
        kwargs.setdefault("secret_key", SECRET_KEY)
        kwargs.setdefault("secure", False)
        kwargs.setdefault("transport", httpx.ASGITransport(app=fake.app))
        client = S3Client(kwargs.pop("endpoint", ENDPOINT), **kwargs)
        clients.append(client)
        return client

    yield factory

    for client in clients:
        await client.close()


@pytest.fixture
def client(make_client) -> S3Client:
    """A signed client pinned to us-east-1."""
    return make_client(region="us-east-1")


@pytest.fixture
def region_cache() -> BucketRegionCache:
    return BucketRegionCache()


@pytest.fixture
def resolving_client(make_client, region_cache: BucketRegionCache) -> S3Client:
    """A signed client with no fixed region; regions come from ?location."""
    return make_client(region_cache=region_cache)
