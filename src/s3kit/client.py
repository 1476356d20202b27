"""Async S3 client: request building, region resolution, and execution.

``S3Client`` owns the HTTP transport, the region cache, and the credentials
provider. Every call goes through the same pipeline:

    validate -> resolve region -> build S3Request -> (retry policy:
    sign -> send -> map errors) -> parse

The bucket and object operations live in ``s3kit.operations`` and are mixed
into the client; multipart uploads are driven by ``MultipartUploader``.
"""

import logging
import time
from datetime import datetime

import httpx

from s3kit import __version__, metrics
from s3kit.auth import DEFAULT_REGION, V4Authenticator
from s3kit.config import ClientConfig
from s3kit.credentials import CredentialsProvider, StaticProvider
from s3kit.endpoints import (
    aws_s3_endpoint,
    get_region_from_endpoint,
    is_amazon_china_endpoint,
    is_amazon_endpoint,
    is_virtual_host_style,
    parse_endpoint,
)
from s3kit.errors import (
    AccessDenied,
    AuthorizationError,
    CredentialsError,
    InvalidObjectNameResponse,
    MalformedResponse,
    MalformedXML,
    NoSuchBucket,
    NoSuchKey,
    NoSuchUpload,
    NotImplementedS3Error,
    RedirectionError,
    S3ConnectionError,
    S3Error,
)
from s3kit.models import Credentials, S3Request
from s3kit.multipart import MultipartUploader
from s3kit.operations.bucket import BucketOperations
from s3kit.operations.object import ObjectOperations
from s3kit.region_cache import BucketRegionCache
from s3kit.retry import ExponentialBackoff, RetryPolicy, no_retry
from s3kit.validation import validate_bucket_name, validate_expiry, validate_object_name
from s3kit.xml_utils import parse_error, parse_location_constraint

logger = logging.getLogger(__name__)

USER_AGENT = f"s3kit/{__version__} (python)"


class S3Client(BucketOperations, ObjectOperations):
    """Async client for Amazon S3 and S3-compatible services.

    Args:
        endpoint: ``host[:port]`` or ``http(s)://host[:port]``.
        access_key: Access key id; empty with secret_key for anonymous access.
        secret_key: Secret access key.
        session_token: Session token for temporary credentials.
        region: Fixed region. When empty, the region is resolved per bucket.
        secure: Use https when the endpoint carries no scheme.
        credentials_provider: Supplies credentials per request. Overrides the
            static keys.
        region_cache: Shared bucket -> region cache. A private one is created
            when omitted.
        transport: httpx transport, e.g. ``httpx.ASGITransport`` in tests.
        timeout: Per-request timeout in seconds.
        retry_policy: Wraps each request attempt; defaults to no retry.
        part_concurrency: Maximum concurrent part uploads.
        user_agent: Value of the User-Agent header.

    Raises:
        InvalidEndpoint: If the endpoint cannot be used.
        CredentialsError: If exactly one of access_key / secret_key is given.
    """

    def __init__(
        self,
        endpoint: str,
        access_key: str = "",
        secret_key: str = "",
        session_token: str = "",
        region: str = "",
        secure: bool = True,
        *,
        credentials_provider: CredentialsProvider | None = None,
        region_cache: BucketRegionCache | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 60.0,
        retry_policy: RetryPolicy | None = None,
        part_concurrency: int = 1,
        user_agent: str = USER_AGENT,
    ) -> None:
        self.base_url = parse_endpoint(endpoint, secure)
        if bool(access_key) != bool(secret_key):
            raise CredentialsError(
                "Both access key and secret key must be provided, or neither for anonymous access."
            )
        self.region = region
        self.credentials_provider = credentials_provider or StaticProvider(
            access_key, secret_key, session_token
        )
        self.region_cache = region_cache if region_cache is not None else BucketRegionCache()
        self.retry_policy = retry_policy or no_retry
        self.part_concurrency = max(1, part_concurrency)
        self.user_agent = user_agent
        self._http = httpx.AsyncClient(transport=transport, timeout=timeout, follow_redirects=False)
        self.multipart = MultipartUploader(self)

    @classmethod
    def from_config(
        cls, config: ClientConfig, transport: httpx.AsyncBaseTransport | None = None
    ) -> "S3Client":
        """Build a client from a loaded ``ClientConfig``."""
        retry_policy = None
        if config.transport.max_retries > 0:
            retry_policy = ExponentialBackoff(
                max_attempts=config.transport.max_retries + 1,
                base_delay=config.transport.retry_base_delay,
            )
        if config.metrics.enabled:
            metrics.init_metrics()
        return cls(
            endpoint=config.endpoint.endpoint,
            access_key=config.credentials.access_key,
            secret_key=config.credentials.secret_key,
            session_token=config.credentials.session_token,
            region=config.endpoint.region,
            secure=config.endpoint.secure,
            transport=transport,
            timeout=config.transport.timeout,
            retry_policy=retry_policy,
            part_concurrency=config.upload.part_concurrency,
        )

    async def __aenter__(self) -> "S3Client":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._http.aclose()

    @property
    def is_secure(self) -> bool:
        return self.base_url.scheme == "https"

    # -- Credentials and region -------------------------------------------------

    async def _credentials(self) -> Credentials:
        return await self.credentials_provider.retrieve()

    async def _authenticator(self) -> V4Authenticator:
        credentials = await self._credentials()
        return V4Authenticator(
            access_key=credentials.access_key,
            secret_key=credentials.secret_key,
            region=self.region,
            session_token=credentials.session_token,
        )

    async def resolve_region(self, bucket: str | None) -> str:
        """Resolve the region a bucket lives in.

        Order: the client region, the region in the endpoint hostname, the
        region cache, then a ``GET ?location`` query. Anonymous clients and
        bucket-less calls fall back to us-east-1. A queried region is added
        to the cache; if another caller cached one first, that value wins.
        """
        if self.region:
            return self.region
        endpoint_region = get_region_from_endpoint(self.base_url.host)
        if endpoint_region:
            return endpoint_region
        if not bucket:
            return DEFAULT_REGION
        cached = self.region_cache.get(bucket)
        if cached:
            return cached
        credentials = await self._credentials()
        if credentials.is_anonymous:
            return DEFAULT_REGION

        region = await self._get_bucket_location(bucket)
        return self.region_cache.add(bucket, region)

    async def _get_bucket_location(self, bucket: str) -> str:
        request = self.build_request(
            "GET", bucket, query={"location": ""}, region=DEFAULT_REGION, path_style=True
        )
        response = await self.execute(request, region=DEFAULT_REGION)
        region = parse_location_constraint(response.content)
        logger.debug("Resolved region %s for bucket %s", region, bucket, extra={"bucket": bucket})
        return region

    # -- Request construction ---------------------------------------------------

    def build_request(
        self,
        method: str,
        bucket: str | None = None,
        object_name: str | None = None,
        query: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
        body: bytes | None = None,
        content_type: str | None = None,
        region: str | None = None,
        path_style: bool = False,
    ) -> S3Request:
        """Build the request for an operation.

        Amazon endpoints get the region's hostname and, unless path_style is
        forced or the bucket name rules it out, virtual-host addressing.
        Every other endpoint uses path-style addressing.

        Raises:
            InvalidBucketName: If bucket is given and invalid.
            InvalidObjectName: If object_name is given and invalid.
        """
        if bucket is not None:
            validate_bucket_name(bucket)
        if object_name is not None:
            validate_object_name(object_name)
            if bucket is None:
                raise ValueError("object_name requires a bucket")

        host = self.base_url.host
        port = self.base_url.port
        virtual_host = False
        if is_amazon_endpoint(host):
            if not is_amazon_china_endpoint(host):
                host = aws_s3_endpoint(region or DEFAULT_REGION)
            if bucket and not path_style:
                virtual_host = is_virtual_host_style(self.base_url, bucket)

        if bucket and virtual_host:
            host = f"{bucket}.{host}"
            path = "/" + (object_name or "")
        elif bucket:
            path = f"/{bucket}/{object_name}" if object_name else f"/{bucket}"
        else:
            path = "/"

        request_headers = httpx.Headers(headers or {})
        request_headers["User-Agent"] = self.user_agent
        if content_type:
            request_headers["Content-Type"] = content_type

        return S3Request(
            method=method.upper(),
            scheme=self.base_url.scheme,
            host=host,
            port=port,
            path=path,
            query=dict(query or {}),
            headers=request_headers,
            body=body,
            bucket=bucket,
            object_name=object_name,
        )

    # -- Execution --------------------------------------------------------------

    async def execute(
        self, request: S3Request, is_sts: bool = False, region: str | None = None
    ) -> httpx.Response:
        """Sign and send request under the retry policy.

        Each attempt signs afresh, so retried requests carry a current
        x-amz-date.

        Returns:
            The 2xx response with its body read.

        Raises:
            S3Error: For non-2xx responses, mapped to the matching subclass.
            S3ConnectionError: If the transport failed.
        """

        async def attempt() -> httpx.Response:
            return await self._send(request, is_sts=is_sts, region=region)

        return await self.retry_policy(attempt)

    async def _send(self, request: S3Request, is_sts: bool, region: str | None) -> httpx.Response:
        authenticator = await self._authenticator()
        authenticator.authenticate(request, is_sts=is_sts, region=region)

        url = request.url
        http_request = self._http.build_request(
            request.method, url, headers=request.headers, content=request.body
        )
        started = time.monotonic()
        try:
            response = await self._http.send(http_request)
        except httpx.TransportError as exc:
            logger.warning(
                "%s %s failed: %s",
                request.method,
                url,
                exc,
                extra={"method": request.method, "url": url},
            )
            raise S3ConnectionError(f"{request.method} {url} failed: {exc}", url=url) from exc

        duration = time.monotonic() - started
        metrics.record_request(
            request.method, response.status_code, duration, len(request.body or b"")
        )
        request_id = response.headers.get("x-amz-request-id", "")
        logger.debug(
            "%s %s -> %d (%.1f ms)",
            request.method,
            url,
            response.status_code,
            duration * 1000,
            extra={
                "method": request.method,
                "url": url,
                "status": response.status_code,
                "duration_ms": round(duration * 1000, 3),
                "request_id": request_id or None,
                "bucket": request.bucket,
                "key": request.object_name,
            },
        )

        if not response.is_success:
            raise self._map_error(request, response)
        return response

    def _map_error(self, request: S3Request, response: httpx.Response) -> S3Error:
        """Translate a non-2xx response into a typed S3Error.

        Responses that mean the bucket is gone also evict it from the region
        cache so the next call resolves its region again.
        """
        status = response.status_code
        common = {
            "resource": request.path,
            "request_id": response.headers.get("x-amz-request-id", ""),
            "host_id": response.headers.get("x-amz-id-2", ""),
            "bucket_name": request.bucket or "",
            "object_name": request.object_name or "",
            "bucket_region": response.headers.get("x-amz-bucket-region", ""),
        }

        if 300 <= status < 400:
            return RedirectionError(http_status=status, **common)

        if status == 404 and "location" in request.query and request.bucket:
            self.region_cache.remove(request.bucket)
            return NoSuchBucket(**common)

        body = response.content
        if not body.strip():
            return self._map_empty_error(request, status, response.reason_phrase, common)

        try:
            fields = parse_error(body)
        except MalformedResponse:
            return S3Error(
                code="UnknownError",
                message=body.decode("utf-8", errors="replace"),
                http_status=status,
                **common,
            )

        code = fields.pop("Code", "")
        message = fields.pop("Message", "")
        common["resource"] = fields.pop("Resource", "") or common["resource"]
        common["request_id"] = fields.pop("RequestId", "") or common["request_id"]
        common["host_id"] = fields.pop("HostId", "") or common["host_id"]
        common["extra_fields"] = fields

        if code in ("SignatureDoesNotMatch", "InvalidAccessKeyId"):
            return AuthorizationError(code=code, message=message, **common)
        if code == "NoSuchBucket":
            if request.bucket:
                self.region_cache.remove(request.bucket)
            return NoSuchBucket(**common)
        if code == "NoSuchKey":
            return NoSuchKey(**common)
        if code == "NoSuchUpload":
            return NoSuchUpload(message or "The specified multipart upload does not exist.", **common)
        if code == "AccessDenied":
            return AccessDenied(message or "Access Denied", **common)
        if code == "MalformedXML":
            return MalformedXML(**common)
        if code == "NotImplemented":
            return NotImplementedS3Error(**common)
        return S3Error(code=code or "UnknownError", message=message, http_status=status, **common)

    def _map_empty_error(
        self, request: S3Request, status: int, reason: str, common: dict[str, str]
    ) -> S3Error:
        if status == 404:
            if request.object_name:
                return NoSuchKey(**common)
            if request.bucket:
                self.region_cache.remove(request.bucket)
                return NoSuchBucket(**common)
        elif status == 403:
            return AccessDenied(**common)
        elif status == 400 and request.object_name:
            return InvalidObjectNameResponse(**common)
        elif status == 501:
            return NotImplementedS3Error(**common)
        return S3Error(
            code="UnknownError",
            message=f"HTTP {status} {reason}".strip(),
            http_status=status,
            **common,
        )

    async def _call(
        self,
        method: str,
        bucket: str | None = None,
        object_name: str | None = None,
        *,
        query: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
        body: bytes | None = None,
        content_type: str | None = None,
        region: str | None = None,
        path_style: bool = False,
    ) -> httpx.Response:
        """Validate, resolve the region, build, and execute one request."""
        if bucket is not None:
            validate_bucket_name(bucket)
        if object_name is not None:
            validate_object_name(object_name)
        if region is None:
            region = await self.resolve_region(bucket)
        request = self.build_request(
            method,
            bucket,
            object_name,
            query=query,
            headers=headers,
            body=body,
            content_type=content_type,
            region=region,
            path_style=path_style,
        )
        return await self.execute(request, region=region)

    # -- Presigning -------------------------------------------------------------

    async def _presign(
        self,
        method: str,
        bucket: str,
        object_name: str,
        expires: int,
        query: dict[str, str] | None = None,
        request_date: datetime | None = None,
    ) -> str:
        validate_expiry(expires)
        validate_bucket_name(bucket)
        validate_object_name(object_name)
        authenticator = await self._authenticator()
        if authenticator.is_anonymous:
            raise CredentialsError("Presigned URLs require credentials.")
        region = await self.resolve_region(bucket)
        request = self.build_request(method, bucket, object_name, query=query, region=region)
        # Headers on the request would be carried into the query string.
        request.headers = httpx.Headers()
        return authenticator.presign_url(request, expires, region=region, request_date=request_date)
