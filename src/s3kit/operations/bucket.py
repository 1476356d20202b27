"""Bucket-level S3 operations.

Implements:
    - ListBuckets (GET /)
    - CreateBucket (PUT /{bucket})
    - HeadBucket (HEAD /{bucket})
    - DeleteBucket (DELETE /{bucket})
    - GetBucketPolicy / PutBucketPolicy / DeleteBucketPolicy (?policy)
    - GetBucketVersioning / PutBucketVersioning (?versioning)
    - ListObjectsV2 (GET /{bucket}?list-type=2)
    - ListMultipartUploads (GET /{bucket}?uploads)
"""

import logging
from collections.abc import AsyncIterator

from s3kit.auth import DEFAULT_REGION
from s3kit.errors import InvalidArgument, NoSuchBucket
from s3kit.models import Bucket, ObjectInfo, Upload
from s3kit.validation import validate_bucket_name
from s3kit.xml_utils import (
    parse_list_buckets,
    parse_list_multipart_uploads,
    parse_list_objects_v2,
    parse_versioning_configuration,
    render_create_bucket_configuration,
    render_versioning_configuration,
)

logger = logging.getLogger(__name__)

VERSIONING_STATUSES = ("Enabled", "Suspended")


class BucketOperations:
    """Bucket operations for ``S3Client``.

    Relies on the client's ``_call``, ``region``, and ``region_cache``.
    """

    async def list_buckets(self) -> list[Bucket]:
        """List all buckets owned by the caller.

        Implements: GET /
        """
        response = await self._call("GET", region=self.region or DEFAULT_REGION)
        return parse_list_buckets(response.content)

    async def make_bucket(self, bucket: str, region: str | None = None, object_lock: bool = False) -> None:
        """Create a bucket.

        Implements: PUT /{bucket}

        The request is always path-style and signed for the target region,
        which is then recorded in the region cache.

        Args:
            bucket: Name of the new bucket.
            region: Region to create it in; defaults to the client region,
                then us-east-1.
            object_lock: Enable object lock on the new bucket.
        """
        validate_bucket_name(bucket)
        if region and self.region and region != self.region:
            raise InvalidArgument(f"Region {region} does not match the client region {self.region}")
        location = region or self.region or DEFAULT_REGION

        body = render_create_bucket_configuration(location)
        headers = {"x-amz-bucket-object-lock-enabled": "true"} if object_lock else None
        await self._call(
            "PUT",
            bucket,
            headers=headers,
            body=body.encode("utf-8") if body else None,
            content_type="application/xml" if body else None,
            region=location,
            path_style=True,
        )
        self.region_cache.add(bucket, location)
        logger.info("Created bucket %s in %s", bucket, location, extra={"bucket": bucket})

    async def bucket_exists(self, bucket: str) -> bool:
        """Implements: HEAD /{bucket}"""
        try:
            await self._call("HEAD", bucket)
        except NoSuchBucket:
            return False
        return True

    async def remove_bucket(self, bucket: str) -> None:
        """Delete an empty bucket and forget its region.

        Implements: DELETE /{bucket}
        """
        await self._call("DELETE", bucket)
        self.region_cache.remove(bucket)

    # -- Policy -------------------------------------------------------------

    async def get_bucket_policy(self, bucket: str) -> str:
        """Return the bucket policy JSON as text."""
        response = await self._call("GET", bucket, query={"policy": ""})
        return response.text

    async def set_bucket_policy(self, bucket: str, policy: str) -> None:
        await self._call(
            "PUT",
            bucket,
            query={"policy": ""},
            body=policy.encode("utf-8"),
            content_type="application/json",
        )

    async def delete_bucket_policy(self, bucket: str) -> None:
        await self._call("DELETE", bucket, query={"policy": ""})

    # -- Versioning ---------------------------------------------------------

    async def get_bucket_versioning(self, bucket: str) -> dict[str, str]:
        """Return ``{"status": ..., "mfa_delete": ...}``; status is "" if never enabled."""
        response = await self._call("GET", bucket, query={"versioning": ""})
        return parse_versioning_configuration(response.content)

    async def set_bucket_versioning(self, bucket: str, status: str, mfa_delete: str | None = None) -> None:
        """Set versioning to "Enabled" or "Suspended"."""
        if status not in VERSIONING_STATUSES:
            raise InvalidArgument(f"Versioning status must be one of {', '.join(VERSIONING_STATUSES)}")
        body = render_versioning_configuration(status, mfa_delete)
        await self._call(
            "PUT",
            bucket,
            query={"versioning": ""},
            body=body.encode("utf-8"),
            content_type="application/xml",
        )

    # -- Listing ------------------------------------------------------------

    async def list_objects(
        self,
        bucket: str,
        prefix: str = "",
        recursive: bool = False,
        start_after: str = "",
    ) -> AsyncIterator[ObjectInfo]:
        """Iterate over objects, fetching one ListObjectsV2 page at a time.

        Implements: GET /{bucket}?list-type=2

        Without ``recursive``, keys are grouped on "/" and each group is
        yielded once as an ``ObjectInfo`` with ``is_prefix`` set.
        """
        continuation_token = ""
        while True:
            query = {"list-type": "2"}
            if prefix:
                query["prefix"] = prefix
            if not recursive:
                query["delimiter"] = "/"
            if start_after:
                query["start-after"] = start_after
            if continuation_token:
                query["continuation-token"] = continuation_token

            response = await self._call("GET", bucket, query=query)
            page = parse_list_objects_v2(response.content)
            for obj in page.objects:
                yield obj

            if not page.is_truncated or not page.next_continuation_token:
                break
            continuation_token = page.next_continuation_token

    async def list_incomplete_uploads(
        self, bucket: str, prefix: str = "", recursive: bool = True
    ) -> AsyncIterator[Upload]:
        """Iterate over incomplete multipart uploads, one page per request.

        Implements: GET /{bucket}?uploads
        """
        key_marker = ""
        upload_id_marker = ""
        while True:
            query = {"uploads": ""}
            if prefix:
                query["prefix"] = prefix
            if not recursive:
                query["delimiter"] = "/"
            if key_marker:
                query["key-marker"] = key_marker
            if upload_id_marker:
                query["upload-id-marker"] = upload_id_marker

            response = await self._call("GET", bucket, query=query)
            page = parse_list_multipart_uploads(response.content)
            for upload in page.uploads:
                yield upload

            if not page.is_truncated:
                break
            next_markers = (page.next_key_marker, page.next_upload_id_marker)
            # A truncated page must move the markers forward.
            if next_markers == ("", "") or next_markers == (key_marker, upload_id_marker):
                break
            key_marker, upload_id_marker = next_markers

    async def remove_incomplete_upload(self, bucket: str, key: str) -> int:
        """Abort every incomplete upload of exactly key.

        Returns:
            The number of uploads aborted.
        """
        upload_ids = [
            upload.upload_id
            async for upload in self.list_incomplete_uploads(bucket, prefix=key)
            if upload.key == key
        ]
        for upload_id in upload_ids:
            await self.multipart.abort_multipart_upload(bucket, key, upload_id)
        return len(upload_ids)
