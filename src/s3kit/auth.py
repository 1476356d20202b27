"""AWS Signature Version 4 request signing for s3kit.

Implements the client side of SigV4 for both header-based auth (the
``Authorization`` header) and query-string auth (presigned URLs).

The module-level functions are pure: canonical request construction,
signing key derivation, and string-to-sign assembly depend only on their
arguments. ``V4Authenticator`` drives them over one ``S3Request`` at a time:
it injects the required headers, canonicalizes, and signs.

References:
    - https://docs.aws.amazon.com/AmazonS3/latest/API/sig-v4-authenticating-requests.html
    - https://docs.aws.amazon.com/AmazonS3/latest/API/sigv4-query-string-auth.html
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import re
import urllib.parse
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from s3kit.endpoints import get_region_from_endpoint
from s3kit.errors import CredentialsError
from s3kit.validation import validate_expiry

if TYPE_CHECKING:
    from s3kit.models import S3Request

logger = logging.getLogger(__name__)

# Constants
ALGORITHM = "AWS4-HMAC-SHA256"
KEY_PREFIX = "AWS4"
SCOPE_TERMINATOR = "aws4_request"
SERVICE_NAME = "s3"
STS_SERVICE_NAME = "sts"
UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"
EMPTY_SHA256 = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
DEFAULT_REGION = "us-east-1"
AMZ_DATE_FORMAT = "%Y%m%dT%H%M%SZ"
SCOPE_DATE_FORMAT = "%Y%m%d"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

# Never signed: the first is the signature itself, the second is rewritten
# by proxies and by whoever executes a presigned URL.
IGNORED_HEADERS = frozenset({"authorization", "user-agent"})

_WHITESPACE_RE = re.compile(r"\s+")


# ---------------------------------------------------------------------------
# Encoding helpers
# ---------------------------------------------------------------------------


def uri_encode(s: str, encode_slash: bool = True) -> str:
    """S3-compatible URI encoding.

    Characters A-Z, a-z, 0-9, '-', '_', '.', '~' are not encoded.
    All other characters are percent-encoded with uppercase hex.
    Spaces become %20 (not +).

    Args:
        s: The string to encode.
        encode_slash: If True (default), '/' is encoded as %2F.
                     If False, '/' is left as-is.

    Returns:
        The URI-encoded string.
    """
    safe = "-_.~" if encode_slash else "-_.~/"
    return urllib.parse.quote(s, safe=safe)


def uri_encode_path(path: str) -> str:
    """URI-encode a path, preserving forward slashes.

    Each path segment is individually URI-encoded. Forward slashes
    are preserved (not encoded).

    Args:
        path: The decoded URI path.

    Returns:
        The URI-encoded path, always starting with '/'.
    """
    if not path:
        return "/"
    segments = path.split("/")
    result = "/".join(uri_encode(seg) for seg in segments)
    if not result.startswith("/"):
        result = "/" + result
    return result


def trim_all(value: str) -> str:
    """Trim a header value for canonical headers.

    Strips leading/trailing whitespace and collapses every internal run of
    whitespace to a single space.
    """
    return _WHITESPACE_RE.sub(" ", value).strip()


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def md5_base64(data: bytes) -> str:
    """Base64 of the MD5 digest, the Content-MD5 header format."""
    return base64.b64encode(hashlib.md5(data).digest()).decode("ascii")


# ---------------------------------------------------------------------------
# Canonical request construction
# ---------------------------------------------------------------------------


def build_canonical_query_string(params: Mapping[str, str]) -> str:
    """Build the canonical query string from decoded query parameters.

    Names and values are URI-encoded (slashes included), then sorted by
    encoded name and value using ordinal comparison.

    Args:
        params: Decoded query parameters.

    Returns:
        The canonical query string, or "" when there are no parameters.
    """
    encoded = sorted((uri_encode(str(name)), uri_encode(str(value))) for name, value in params.items())
    return "&".join(f"{name}={value}" for name, value in encoded)


def get_headers_to_sign(headers: Mapping[str, str]) -> dict[str, str]:
    """Select the headers to sign, keyed by lower-cased name, sorted by name."""
    selected: dict[str, str] = {}
    for name, value in headers.items():
        lower_name = name.lower()
        if lower_name in IGNORED_HEADERS:
            continue
        selected[lower_name] = value
    return dict(sorted(selected.items()))


def build_canonical_request(
    method: str,
    path: str,
    headers_to_sign: Mapping[str, str],
    query_params: Mapping[str, str],
    content_sha256: str,
) -> str:
    """Build the canonical request string.

    Args:
        method: HTTP method.
        path: The decoded absolute request path.
        headers_to_sign: Headers to include (any case; authorization and
            user-agent are dropped if present).
        query_params: Decoded query parameters.
        content_sha256: Hex SHA-256 of the payload or UNSIGNED-PAYLOAD.

    Returns:
        The canonical request string.
    """
    signed = get_headers_to_sign(headers_to_sign)

    lines = [
        method.upper(),
        uri_encode_path(path),
        build_canonical_query_string(query_params),
    ]
    lines.extend(f"{name}:{trim_all(value)}" for name, value in signed.items())
    lines.append("")
    lines.append(";".join(signed))
    lines.append(content_sha256)
    return "\n".join(lines)


def build_string_to_sign(amz_date: str, scope: str, canonical_request: str) -> str:
    """Build the string to sign.

    Args:
        amz_date: ISO 8601 basic timestamp (YYYYMMDDTHHMMSSZ).
        scope: Credential scope (YYYYMMDD/region/service/aws4_request).
        canonical_request: The assembled canonical request string.

    Returns:
        The string to sign.
    """
    canonical_hash = sha256_hex(canonical_request.encode("utf-8"))
    return f"{ALGORITHM}\n{amz_date}\n{scope}\n{canonical_hash}"


def get_scope(signing_date: datetime, region: str, service: str = SERVICE_NAME) -> str:
    return f"{signing_date.strftime(SCOPE_DATE_FORMAT)}/{region}/{service}/{SCOPE_TERMINATOR}"


# ---------------------------------------------------------------------------
# Signing key derivation
# ---------------------------------------------------------------------------


def sign(key: bytes, message: bytes | str) -> bytes:
    """HMAC-SHA256 of message under key."""
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(key, message, hashlib.sha256).digest()


def derive_signing_key(secret_key: str, date: str, region: str, service: str) -> bytes:
    """Derive the SigV4 signing key via the HMAC-SHA256 chain.

    Args:
        secret_key: The secret access key.
        date: Date string (YYYYMMDD).
        region: AWS region.
        service: Service name ("s3" or "sts").

    Returns:
        The 32-byte signing key.
    """
    k_date = sign((KEY_PREFIX + secret_key).encode("utf-8"), date)
    k_region = sign(k_date, region)
    k_service = sign(k_region, service)
    return sign(k_service, SCOPE_TERMINATOR)


def as_utc(value: datetime | None) -> datetime:
    if value is None:
        return datetime.now(timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Authenticator
# ---------------------------------------------------------------------------


class V4Authenticator:
    """Signs outgoing requests with AWS Signature Version 4.

    The authenticator holds only constructor-scoped inputs (credentials,
    region, session token). Every call derives its own signing date, scope,
    and key; nothing is carried from one request to the next.

    Attributes:
        access_key: Access key id ("" for anonymous).
        region: Region fixed by the client, or "" to resolve per request.
        session_token: Temporary-credential session token, or "".
        is_anonymous: True when no credentials were supplied.
    """

    def __init__(
        self,
        access_key: str = "",
        secret_key: str = "",
        region: str = "",
        session_token: str = "",
    ) -> None:
        """Initialize the authenticator.

        Raises:
            CredentialsError: If only one of access_key / secret_key is set.
        """
        if bool(access_key) != bool(secret_key):
            raise CredentialsError(
                "Both access key and secret key must be provided, or neither for anonymous access."
            )
        self.access_key = access_key
        self._secret_key = secret_key
        self.region = region
        self.session_token = session_token
        self.is_anonymous = not access_key

    def __repr__(self) -> str:
        return f"V4Authenticator(access_key={self.access_key!r}, region={self.region!r})"

    def get_region(self, host: str, region: str | None = None) -> str:
        """Resolve the signing region.

        Order: the region passed for this request, the client region, the
        region embedded in an Amazon endpoint host, then us-east-1.
        """
        if region:
            return region
        if self.region:
            return self.region
        return get_region_from_endpoint(host) or DEFAULT_REGION

    def get_credential_string(self, signing_date: datetime, region: str, service: str = SERVICE_NAME) -> str:
        """Credential string of the form {ACCESS_KEY}/{date}/{region}/{service}/aws4_request."""
        return f"{self.access_key}/{get_scope(as_utc(signing_date), region, service)}"

    # -- Header injection ------------------------------------------------------

    def _set_content_sha256(self, request: S3Request, is_sts: bool) -> None:
        if self.is_anonymous:
            return
        if (request.is_secure and not is_sts) or request.is_multi_delete:
            value = UNSIGNED_PAYLOAD
        elif request.method in ("PUT", "POST"):
            value = sha256_hex(request.body or b"")
        elif request.body is not None:
            # Insecure request with a body on a method other than PUT/POST.
            request.headers["Content-MD5"] = md5_base64(request.body)
            return
        else:
            value = EMPTY_SHA256
        request.headers["x-amz-content-sha256"] = value

    def _set_content_md5(self, request: S3Request) -> None:
        if request.method not in ("PUT", "POST") or request.body is None:
            return
        if "content-md5" in request.headers:
            return
        # Insecure signed requests already carry a body SHA-256.
        if not request.is_secure and not self.is_anonymous and not request.is_multi_delete:
            return
        request.headers["Content-MD5"] = md5_base64(request.body)

    @staticmethod
    def _canonical_query(request: S3Request) -> Mapping[str, str]:
        if request.query or not request.body:
            return request.query
        content_type = request.headers.get("content-type", "").split(";")[0].strip().lower()
        if content_type != FORM_CONTENT_TYPE:
            return request.query
        return dict(urllib.parse.parse_qsl(request.body.decode("utf-8"), keep_blank_values=True))

    # -- Header-based auth -------------------------------------------------------

    def authenticate(
        self,
        request: S3Request,
        is_sts: bool = False,
        region: str | None = None,
        signing_date: datetime | None = None,
    ) -> str | None:
        """Stamp the required headers on request and sign it.

        Args:
            request: The request to sign. Its headers are updated in place.
            is_sts: Sign for the "sts" service instead of "s3".
            region: The resolved bucket region for this request, if any.
            signing_date: Fixed signing time; defaults to now (UTC).

        Returns:
            The Authorization header value, or None for anonymous clients.
        """
        signing_date = as_utc(signing_date)
        amz_date = signing_date.strftime(AMZ_DATE_FORMAT)

        self._set_content_sha256(request, is_sts)
        self._set_content_md5(request)
        request.headers["Host"] = request.host_header
        request.headers["x-amz-date"] = amz_date
        if self.session_token:
            request.headers["X-Amz-Security-Token"] = self.session_token

        if self.is_anonymous:
            return None

        headers_to_sign = get_headers_to_sign(request.headers)
        content_sha256 = request.headers.get("x-amz-content-sha256", EMPTY_SHA256)
        canonical_request = build_canonical_request(
            method=request.method,
            path=request.path,
            headers_to_sign=headers_to_sign,
            query_params=self._canonical_query(request),
            content_sha256=content_sha256,
        )

        signing_region = self.get_region(request.host, region)
        service = STS_SERVICE_NAME if is_sts else SERVICE_NAME
        scope = get_scope(signing_date, signing_region, service)
        string_to_sign = build_string_to_sign(amz_date, scope, canonical_request)
        signing_key = derive_signing_key(
            self._secret_key, signing_date.strftime(SCOPE_DATE_FORMAT), signing_region, service
        )
        signature = sign(signing_key, string_to_sign).hex()

        signed_headers = ";".join(headers_to_sign)
        authorization = (
            f"{ALGORITHM} Credential={self.access_key}/{scope}, "
            f"SignedHeaders={signed_headers}, Signature={signature}"
        )
        request.headers["Authorization"] = authorization

        logger.debug(
            "Signed %s %s scope=%s signed_headers=%s",
            request.method,
            request.path,
            scope,
            signed_headers,
        )
        return authorization

    # -- Query-string auth -------------------------------------------------------

    def presign_url(
        self,
        request: S3Request,
        expires: int,
        region: str | None = None,
        session_token: str | None = None,
        request_date: datetime | None = None,
    ) -> str:
        """Build a presigned URL for request.

        The request's headers are not modified. Any headers already on the
        request are carried as query parameters; only ``host`` is signed as
        a header, and the payload is always UNSIGNED-PAYLOAD.

        Args:
            request: The request to presign.
            expires: Validity in seconds (1 to 604800).
            region: Signing region; resolved like ``authenticate`` if omitted.
            session_token: Overrides the constructor session token.
            request_date: Fixed signing time; defaults to now (UTC).

        Returns:
            The fully qualified presigned URL.

        Raises:
            InvalidExpiry: If expires is out of range.
            CredentialsError: If the authenticator is anonymous.
        """
        validate_expiry(expires)
        if self.is_anonymous:
            raise CredentialsError("Presigned URLs require credentials.")

        signing_date = as_utc(request_date)
        amz_date = signing_date.strftime(AMZ_DATE_FORMAT)
        signing_region = self.get_region(request.host, region)
        scope = get_scope(signing_date, signing_region)
        token = self.session_token if session_token is None else session_token

        query = dict(request.query)
        query["X-Amz-Algorithm"] = ALGORITHM
        query["X-Amz-Credential"] = f"{self.access_key}/{scope}"
        query["X-Amz-Date"] = amz_date
        query["X-Amz-Expires"] = str(expires)
        query["X-Amz-SignedHeaders"] = "host"
        for name, value in get_headers_to_sign(request.headers).items():
            if name != "host":
                query[name] = trim_all(value)
        if token:
            query["X-Amz-Security-Token"] = token

        canonical_request = build_canonical_request(
            method=request.method,
            path=request.path,
            headers_to_sign={"host": request.host_header},
            query_params=query,
            content_sha256=UNSIGNED_PAYLOAD,
        )
        string_to_sign = build_string_to_sign(amz_date, scope, canonical_request)
        signing_key = derive_signing_key(
            self._secret_key, signing_date.strftime(SCOPE_DATE_FORMAT), signing_region, SERVICE_NAME
        )
        signature = sign(signing_key, string_to_sign).hex()

        return (
            f"{request.scheme}://{request.host_header}{uri_encode_path(request.path)}"
            f"?{build_canonical_query_string(query)}&X-Amz-Signature={signature}"
        )

    def presign_post_signature(self, region: str, signing_date: datetime, policy_base64: str) -> str:
        """Sign a base64-encoded POST policy document.

        Returns:
            64-character lowercase hex signature.
        """
        signing_date = as_utc(signing_date)
        signing_key = derive_signing_key(
            self._secret_key, signing_date.strftime(SCOPE_DATE_FORMAT), region, SERVICE_NAME
        )
        return sign(signing_key, policy_base64).hex()
