"""Data model types for the s3kit client.

``S3Request`` is the request-to-sign handed to the authenticator and the
transport. The remaining dataclasses are the typed results produced by the
XML parsers and consumed by the multipart orchestrator and callers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import NamedTuple

import httpx

from s3kit.auth import uri_encode, uri_encode_path
from s3kit.errors import MalformedResponse


@dataclass
class S3Request:
    """A single HTTP request, before and after signing.

    Query parameters are single-valued; setting a key twice keeps the last
    value. Headers are case-insensitive (``httpx.Headers``), and assigning an
    existing header name replaces its value.

    Attributes:
        method: HTTP method, uppercase.
        scheme: "http" or "https".
        host: Target hostname (no port).
        port: Explicit port, or None for the scheme default.
        path: Decoded absolute path, e.g. "/bucket/some key".
        query: Query parameters (name -> value, "" for flag parameters).
        headers: Request headers.
        body: Request body bytes, or None.
        bucket: The bucket addressed, used for error mapping.
        object_name: The object key addressed, used for error mapping.
    """

    method: str
    scheme: str
    host: str
    port: int | None = None
    path: str = "/"
    query: dict[str, str] = field(default_factory=dict)
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    body: bytes | None = None
    bucket: str | None = None
    object_name: str | None = None

    @property
    def is_secure(self) -> bool:
        return self.scheme == "https"

    @property
    def default_port(self) -> int:
        return 443 if self.scheme == "https" else 80

    @property
    def host_header(self) -> str:
        """Host header value: bare host on the default port, else host:port."""
        if self.port is None or self.port == self.default_port:
            return self.host
        return f"{self.host}:{self.port}"

    @property
    def encoded_query(self) -> str:
        """Query string in canonical (sorted, S3-encoded) form."""
        pairs = sorted((uri_encode(k), uri_encode(v)) for k, v in self.query.items())
        return "&".join(f"{k}={v}" for k, v in pairs)

    @property
    def url(self) -> str:
        """Absolute URL with the path and query percent-encoded."""
        url = f"{self.scheme}://{self.host_header}{uri_encode_path(self.path)}"
        query = self.encoded_query
        if query:
            url += "?" + query
        return url

    @property
    def is_multi_delete(self) -> bool:
        return self.method == "POST" and "delete" in self.query


@dataclass(frozen=True)
class Credentials:
    """An access key / secret key / session token triple."""

    access_key: str = ""
    secret_key: str = ""
    session_token: str = ""

    @property
    def is_anonymous(self) -> bool:
        return not self.access_key and not self.secret_key

    def __repr__(self) -> str:
        return f"Credentials(access_key={self.access_key!r}, secret_key='***')"


class PartSizing(NamedTuple):
    """Part layout for a multipart upload."""

    part_size: int
    part_count: int
    last_part_size: int


@dataclass(frozen=True)
class Part:
    """One uploaded part.

    Attributes:
        part_number: 1-based part number.
        etag: MD5 hex digest with surrounding quotes removed.
        size: Size of the part in bytes.
        last_modified: Server timestamp, when known.
    """

    part_number: int
    etag: str
    size: int = 0
    last_modified: str = ""


@dataclass(frozen=True)
class Upload:
    """An incomplete multipart upload as reported by ListMultipartUploads."""

    key: str
    upload_id: str
    initiated: str = ""
    storage_class: str = "STANDARD"

    @property
    def initiated_at(self) -> datetime | None:
        """The Initiated timestamp as a datetime, or None when absent.

        Raises:
            MalformedResponse: If the server sent an unparseable timestamp.
        """
        if not self.initiated:
            return None
        try:
            return datetime.fromisoformat(self.initiated.replace("Z", "+00:00"))
        except ValueError as exc:
            raise MalformedResponse(f"Initiated is not an ISO 8601 timestamp: {self.initiated!r}") from exc


@dataclass
class ListPartsPage:
    """One page of a ListParts response."""

    bucket: str
    key: str
    upload_id: str
    parts: list[Part] = field(default_factory=list)
    is_truncated: bool = False
    next_part_number_marker: int = 0


@dataclass
class ListUploadsPage:
    """One page of a ListMultipartUploads response."""

    bucket: str
    uploads: list[Upload] = field(default_factory=list)
    common_prefixes: list[str] = field(default_factory=list)
    is_truncated: bool = False
    next_key_marker: str = ""
    next_upload_id_marker: str = ""


@dataclass(frozen=True)
class Bucket:
    """A bucket entry from ListBuckets."""

    name: str
    creation_date: str = ""


@dataclass(frozen=True)
class ObjectInfo:
    """An object entry from ListObjectsV2.

    ``is_prefix`` marks a CommonPrefixes entry (a "directory").
    """

    key: str
    size: int = 0
    etag: str = ""
    last_modified: str = ""
    storage_class: str = "STANDARD"
    is_prefix: bool = False


@dataclass
class ListObjectsPage:
    """One page of a ListObjectsV2 response."""

    bucket: str
    objects: list[ObjectInfo] = field(default_factory=list)
    is_truncated: bool = False
    next_continuation_token: str = ""


@dataclass(frozen=True)
class ObjectStat:
    """Object metadata from a HEAD request."""

    bucket: str
    key: str
    size: int
    etag: str
    content_type: str = "application/octet-stream"
    last_modified: str = ""
    version_id: str = ""
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PutObjectResult:
    """Outcome of put_object.

    Attributes:
        bucket: Bucket name.
        key: Object key.
        etag: ETag of the stored object (quotes removed).
        size: Number of bytes sent or accounted for.
        upload_id: The multipart upload id, or "" for a single PUT.
        parts_uploaded: Number of part PUTs actually issued.
        parts_skipped: Number of parts reused from a previous attempt.
    """

    bucket: str
    key: str
    etag: str
    size: int
    upload_id: str = ""
    parts_uploaded: int = 0
    parts_skipped: int = 0


@dataclass(frozen=True)
class Retention:
    """Object lock retention settings."""

    mode: str
    retain_until: str


@dataclass(frozen=True)
class DeleteError:
    """A per-key failure from a multi-object delete."""

    key: str
    code: str
    message: str
    version_id: str = ""
