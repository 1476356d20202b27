"""Object-level S3 operations.

Implements:
    - PutObject (delegated to ``MultipartUploader``)
    - GetObject (GET /{bucket}/{key})
    - HeadObject (HEAD /{bucket}/{key})
    - DeleteObject (DELETE /{bucket}/{key})
    - DeleteObjects (POST /{bucket}?delete)
    - GetObjectRetention / PutObjectRetention (?retention)
    - Presigned GET / PUT URLs and POST policy forms
"""

import asyncio
import base64
import json
import logging
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone

from s3kit.auth import ALGORITHM, AMZ_DATE_FORMAT, as_utc, md5_base64
from s3kit.errors import CredentialsError, InvalidArgument
from s3kit.models import DeleteError, ObjectStat, PutObjectResult, Retention
from s3kit.validation import validate_bucket_name, validate_object_name
from s3kit.xml_utils import parse_delete_result, parse_retention, render_delete_objects, render_retention, strip_etag

logger = logging.getLogger(__name__)

DEFAULT_EXPIRY = 7 * 24 * 3600  # 7 days in seconds
MAX_DELETE_KEYS = 1000
RETENTION_MODES = ("GOVERNANCE", "COMPLIANCE")
POLICY_EXPIRATION_FORMAT = "%Y-%m-%dT%H:%M:%S.000Z"


class ObjectOperations:
    """Object operations for ``S3Client``.

    Relies on the client's ``_call``, ``_presign``, and ``multipart``.
    """

    async def put_object(
        self,
        bucket: str,
        key: str,
        stream,
        size: int,
        content_type: str | None = None,
        headers: Mapping[str, str] | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> PutObjectResult:
        """Upload an object from a readable byte stream.

        Objects under 5 MiB go up in a single PUT; larger or unknown-size
        (size=-1) objects use a resumable multipart upload. See
        ``MultipartUploader.put_object``.
        """
        return await self.multipart.put_object(
            bucket,
            key,
            stream,
            size,
            content_type=content_type,
            headers=headers,
            cancel_event=cancel_event,
        )

    async def get_object(
        self,
        bucket: str,
        key: str,
        offset: int = 0,
        length: int | None = None,
        version_id: str | None = None,
    ) -> bytes:
        """Download an object, or a byte range of it.

        Implements: GET /{bucket}/{key}
        """
        headers = {}
        if offset or length is not None:
            if offset < 0 or (length is not None and length <= 0):
                raise InvalidArgument("offset must be >= 0 and length must be > 0")
            end = f"{offset + length - 1}" if length is not None else ""
            headers["Range"] = f"bytes={offset}-{end}"
        query = {"versionId": version_id} if version_id else None
        response = await self._call("GET", bucket, key, query=query, headers=headers)
        return response.content

    async def stat_object(self, bucket: str, key: str, version_id: str | None = None) -> ObjectStat:
        """Fetch object metadata.

        Implements: HEAD /{bucket}/{key}
        """
        query = {"versionId": version_id} if version_id else None
        response = await self._call("HEAD", bucket, key, query=query)
        headers = response.headers
        metadata = {
            name[len("x-amz-meta-"):]: value
            for name, value in headers.items()
            if name.lower().startswith("x-amz-meta-")
        }
        return ObjectStat(
            bucket=bucket,
            key=key,
            size=int(headers.get("content-length", "0")),
            etag=strip_etag(headers.get("etag")),
            content_type=headers.get("content-type", "application/octet-stream"),
            last_modified=headers.get("last-modified", ""),
            version_id=headers.get("x-amz-version-id", ""),
            metadata=metadata,
        )

    async def remove_object(self, bucket: str, key: str, version_id: str | None = None) -> None:
        """Implements: DELETE /{bucket}/{key}"""
        query = {"versionId": version_id} if version_id else None
        await self._call("DELETE", bucket, key, query=query)

    async def remove_objects(self, bucket: str, keys: Iterable[str], quiet: bool = True) -> list[DeleteError]:
        """Delete many objects, up to 1000 per request.

        Implements: POST /{bucket}?delete

        Returns:
            Per-key failures reported by the server; empty if all succeeded.
        """
        validate_bucket_name(bucket)
        pending = list(keys)
        for key in pending:
            validate_object_name(key)

        errors: list[DeleteError] = []
        for start in range(0, len(pending), MAX_DELETE_KEYS):
            batch = pending[start:start + MAX_DELETE_KEYS]
            body = render_delete_objects(batch, quiet=quiet).encode("utf-8")
            response = await self._call(
                "POST",
                bucket,
                query={"delete": ""},
                headers={"Content-MD5": md5_base64(body)},
                body=body,
                content_type="application/xml",
            )
            errors.extend(parse_delete_result(response.content))

        if errors:
            logger.warning("%d of %d deletes failed in %s", len(errors), len(pending), bucket, extra={"bucket": bucket})
        return errors

    # -- Retention ----------------------------------------------------------

    async def get_object_retention(self, bucket: str, key: str, version_id: str | None = None) -> Retention:
        query = {"retention": ""}
        if version_id:
            query["versionId"] = version_id
        response = await self._call("GET", bucket, key, query=query)
        return parse_retention(response.content)

    async def set_object_retention(
        self,
        bucket: str,
        key: str,
        mode: str,
        retain_until: datetime,
        version_id: str | None = None,
        bypass_governance: bool = False,
    ) -> None:
        """Set object lock retention.

        Args:
            mode: "GOVERNANCE" or "COMPLIANCE".
            retain_until: Timezone-aware expiry of the retention.
        """
        if mode not in RETENTION_MODES:
            raise InvalidArgument(f"Retention mode must be one of {', '.join(RETENTION_MODES)}")
        until = retain_until.astimezone(timezone.utc).strftime(POLICY_EXPIRATION_FORMAT)
        body = render_retention(mode, until).encode("utf-8")
        query = {"retention": ""}
        if version_id:
            query["versionId"] = version_id
        headers = {"Content-MD5": md5_base64(body)}
        if bypass_governance:
            headers["x-amz-bypass-governance-retention"] = "true"
        await self._call("PUT", bucket, key, query=query, headers=headers, body=body, content_type="application/xml")

    # -- Presigning ---------------------------------------------------------

    async def presigned_get_object(
        self,
        bucket: str,
        key: str,
        expires: int = DEFAULT_EXPIRY,
        response_headers: Mapping[str, str] | None = None,
        request_date: datetime | None = None,
    ) -> str:
        """Return a URL that downloads the object without credentials.

        Args:
            response_headers: Overrides such as ``response-content-type``,
                added to the signed query string.
        """
        return await self._presign(
            "GET", bucket, key, expires, query=dict(response_headers or {}), request_date=request_date
        )

    async def presigned_put_object(
        self, bucket: str, key: str, expires: int = DEFAULT_EXPIRY, request_date: datetime | None = None
    ) -> str:
        """Return a URL that uploads the object without credentials."""
        return await self._presign("PUT", bucket, key, expires, request_date=request_date)

    async def presigned_post_policy(
        self,
        bucket: str,
        key: str,
        expiration: datetime,
        content_type: str | None = None,
        content_length_range: tuple[int, int] | None = None,
        request_date: datetime | None = None,
    ) -> tuple[str, dict[str, str]]:
        """Build a browser-upload POST policy.

        Returns:
            The URL to POST to and the form fields to send with the file.
        """
        validate_bucket_name(bucket)
        validate_object_name(key)
        authenticator = await self._authenticator()
        if authenticator.is_anonymous:
            raise CredentialsError("POST policies require credentials.")

        region = await self.resolve_region(bucket)
        signing_date = as_utc(request_date)
        amz_date = signing_date.strftime(AMZ_DATE_FORMAT)
        credential = authenticator.get_credential_string(signing_date, region)

        conditions: list[list] = [
            ["eq", "$bucket", bucket],
            ["eq", "$key", key],
            ["eq", "$x-amz-algorithm", ALGORITHM],
            ["eq", "$x-amz-credential", credential],
            ["eq", "$x-amz-date", amz_date],
        ]
        if content_type:
            conditions.append(["eq", "$Content-Type", content_type])
        if content_length_range:
            low, high = content_length_range
            if low < 0 or high < low:
                raise InvalidArgument("content_length_range must satisfy 0 <= low <= high")
            conditions.append(["content-length-range", low, high])
        if authenticator.session_token:
            conditions.append(["eq", "$x-amz-security-token", authenticator.session_token])

        policy = {
            "expiration": expiration.astimezone(timezone.utc).strftime(POLICY_EXPIRATION_FORMAT),
            "conditions": conditions,
        }
        policy_base64 = base64.b64encode(json.dumps(policy).encode("utf-8")).decode("ascii")

        fields = {
            "bucket": bucket,
            "key": key,
            "policy": policy_base64,
            "x-amz-algorithm": ALGORITHM,
            "x-amz-credential": credential,
            "x-amz-date": amz_date,
            "x-amz-signature": authenticator.presign_post_signature(region, signing_date, policy_base64),
        }
        if content_type:
            fields["Content-Type"] = content_type
        if authenticator.session_token:
            fields["x-amz-security-token"] = authenticator.session_token

        request = self.build_request("POST", bucket, region=region)
        url = f"{request.scheme}://{request.host_header}{request.path}"
        return url, fields
