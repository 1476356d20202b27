"""Error definitions for the s3kit client.

Three families share the ``S3KitError`` root:

- ``S3Error`` and subclasses: the server answered with a non-2xx status.
- ``ClientInputError`` and subclasses: the caller broke an input contract.
  These are raised before any network call and are never retried.
- ``S3ConnectionError``: the transport failed (refused, reset, timeout).
"""


class S3KitError(Exception):
    """Base class for every error raised by s3kit."""


# -- Server / protocol errors --------------------------------------------------


class S3Error(S3KitError):
    """An S3 error response with code, message, and HTTP status.

    Attributes:
        code: The S3 error code string (e.g. "NoSuchBucket", "AccessDenied").
        message: Human-readable error description.
        http_status: The HTTP status code of the response.
        resource: The resource path the server reported (or the request path).
        request_id: Value of <RequestId> or the x-amz-request-id header.
        host_id: Value of <HostId> or the x-amz-id-2 header.
        bucket_name: The bucket the request addressed, if any.
        object_name: The object key the request addressed, if any.
        bucket_region: Value of the x-amz-bucket-region header, if present.
        extra_fields: Any other elements found in the XML error body.
    """

    def __init__(
        self,
        code: str,
        message: str,
        http_status: int = 400,
        resource: str = "",
        request_id: str = "",
        host_id: str = "",
        bucket_name: str = "",
        object_name: str = "",
        bucket_region: str = "",
        extra_fields: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.http_status = http_status
        self.resource = resource
        self.request_id = request_id
        self.host_id = host_id
        self.bucket_name = bucket_name
        self.object_name = object_name
        self.bucket_region = bucket_region
        self.extra_fields = extra_fields or {}

    def __str__(self) -> str:
        parts = [f"{self.code}: {self.message}"]
        if self.resource:
            parts.append(f"resource={self.resource}")
        if self.request_id:
            parts.append(f"request_id={self.request_id}")
        return ", ".join(parts)


class NoSuchBucket(S3Error):
    """The specified bucket does not exist."""

    def __init__(self, bucket: str = "", **kwargs) -> None:
        kwargs.setdefault("bucket_name", bucket)
        super().__init__(
            code="NoSuchBucket",
            message="The specified bucket does not exist.",
            http_status=404,
            **kwargs,
        )


class NoSuchKey(S3Error):
    """The specified key does not exist."""

    def __init__(self, key: str = "", **kwargs) -> None:
        kwargs.setdefault("object_name", key)
        super().__init__(
            code="NoSuchKey",
            message="The specified key does not exist.",
            http_status=404,
            **kwargs,
        )


class NoSuchUpload(S3Error):
    """The specified multipart upload does not exist."""

    def __init__(self, message: str = "The specified multipart upload does not exist.", **kwargs) -> None:
        super().__init__(code="NoSuchUpload", message=message, http_status=404, **kwargs)


class AccessDenied(S3Error):
    """Access denied error."""

    def __init__(self, message: str = "Access Denied", **kwargs) -> None:
        super().__init__(code="AccessDenied", message=message, http_status=403, **kwargs)


class AuthorizationError(S3Error):
    """The server rejected the signature or the access key."""

    def __init__(self, code: str = "SignatureDoesNotMatch", message: str = "", **kwargs) -> None:
        super().__init__(
            code=code,
            message=message or "The request signature was rejected by the server.",
            http_status=403,
            **kwargs,
        )


class MalformedXML(S3Error):
    """The server reported that the XML we sent was not well-formed."""

    def __init__(
        self,
        message: str = "The XML you provided was not well-formed or did not validate against our published schema.",
        **kwargs,
    ) -> None:
        super().__init__(code="MalformedXML", message=message, http_status=400, **kwargs)


class InvalidObjectNameResponse(S3Error):
    """A 400 without body on an object resource."""

    def __init__(self, key: str = "", **kwargs) -> None:
        kwargs.setdefault("object_name", key)
        super().__init__(
            code="InvalidObjectName",
            message="Invalid object name.",
            http_status=400,
            **kwargs,
        )


class NotImplementedS3Error(S3Error):
    """The requested functionality is not implemented by the server."""

    def __init__(
        self, message: str = "A header you provided implies functionality that is not implemented.", **kwargs
    ) -> None:
        super().__init__(code="NotImplemented", message=message, http_status=501, **kwargs)


class RedirectionError(S3Error):
    """The server answered with a redirect (wrong region or endpoint)."""

    def __init__(self, http_status: int = 301, message: str = "", **kwargs) -> None:
        region = kwargs.get("bucket_region", "")
        if not message:
            message = "Redirection detected."
            if region:
                message += f" Use region {region}."
        super().__init__(code="PermanentRedirect", message=message, http_status=http_status, **kwargs)


# -- Input contract errors -----------------------------------------------------


class ClientInputError(S3KitError):
    """The caller supplied arguments that violate the API contract."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidBucketName(ClientInputError):
    """The specified bucket name is not valid."""

    def __init__(self, bucket: str = "", reason: str = "") -> None:
        super().__init__(f"Bucket name '{bucket}' is not valid: {reason or 'invalid name'}")
        self.bucket_name = bucket


class InvalidObjectName(ClientInputError):
    """The specified object name is not valid."""

    def __init__(self, key: str = "", reason: str = "") -> None:
        super().__init__(f"Object name '{key}' is not valid: {reason or 'invalid name'}")
        self.object_name = key


class InvalidEndpoint(ClientInputError):
    """The endpoint is not a usable hostname or URL."""

    def __init__(self, endpoint: str = "", reason: str = "Invalid endpoint.") -> None:
        super().__init__(f"Endpoint '{endpoint}': {reason}")
        self.endpoint = endpoint


class InvalidExpiry(ClientInputError):
    """A presigned URL expiry is outside the allowed range."""

    def __init__(self, expires: int) -> None:
        super().__init__(f"Expiry {expires} must be between 1 and 604800 seconds.")
        self.expires = expires


class InvalidArgument(ClientInputError):
    """A generic invalid argument."""


class EntityTooLarge(ClientInputError):
    """The proposed upload exceeds the maximum allowed object size."""

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(
            f"Your proposed upload size {size} exceeds the maximum allowed object size {limit}."
        )
        self.size = size
        self.limit = limit


class SizeMismatch(ClientInputError):
    """The stream did not yield exactly the declared number of bytes.

    When the stream is longer than declared, only one chunk past the end is
    read, so ``actual`` is a lower bound.
    """

    def __init__(self, bucket: str, key: str, expected: int, actual: int) -> None:
        super().__init__(
            f"Size mismatch for {bucket}/{key}: expected {expected} bytes, got {actual}."
        )
        self.bucket_name = bucket
        self.object_name = key
        self.expected = expected
        self.actual = actual


class UnexpectedShortRead(ClientInputError):
    """The stream ended before the declared size was read."""

    def __init__(self, read: int, expected: int) -> None:
        super().__init__(f"Data read {read} is shorter than the size {expected} of input buffer.")
        self.read = read
        self.expected = expected


# -- Everything else -----------------------------------------------------------


class S3ConnectionError(S3KitError):
    """The HTTP exchange failed before a response was received."""

    def __init__(self, message: str, url: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.url = url


class CredentialsError(S3KitError):
    """Credentials are missing, incomplete, or could not be retrieved."""


class MalformedResponse(S3KitError):
    """The server returned a body that could not be parsed."""


class UploadCancelled(S3KitError):
    """A multipart upload was cancelled between parts.

    The upload is left on the server so a later call can resume it.
    """

    def __init__(self, bucket: str, key: str, upload_id: str, next_part: int) -> None:
        super().__init__(
            f"Upload {upload_id} of {bucket}/{key} cancelled before part {next_part}."
        )
        self.bucket_name = bucket
        self.object_name = key
        self.upload_id = upload_id
        self.next_part = next_part
