"""Multipart upload orchestration for s3kit.

``MultipartUploader.put_object`` drives one upload through

    SizeCheck -> SingleShot | (ResumeOrNew -> PartLoop -> Complete)

Objects under ``MIN_PART_SIZE`` go up in one PUT. Larger objects are split
into equal parts (the last may be smaller). Before uploading, the most
recent incomplete upload of the same key is looked up; any of its parts
whose size and MD5 match the freshly read bytes are reused instead of being
sent again. An interrupted upload is left on the server so that the next
call can resume it.

The low-level calls (initiate, upload part, list parts, complete, abort)
are exposed as well.
"""

from __future__ import annotations

import asyncio
import hashlib
import inspect
import logging
from collections.abc import AsyncIterator, Mapping
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from s3kit import metrics
from s3kit.errors import (
    EntityTooLarge,
    InvalidArgument,
    SizeMismatch,
    UnexpectedShortRead,
    UploadCancelled,
)
from s3kit.models import Part, PartSizing, PutObjectResult, Upload
from s3kit.validation import validate_bucket_name, validate_object_name, validate_part_number
from s3kit.xml_utils import (
    parse_complete_multipart_upload,
    parse_initiate_multipart_upload,
    parse_list_parts,
    render_complete_multipart_upload,
    strip_etag,
)

if TYPE_CHECKING:
    from s3kit.client import S3Client

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MIN_PART_SIZE = 5 * 1024 * 1024  # 5 MiB
MAX_PARTS = 10000
MAX_MULTIPART_OBJECT_SIZE = 5 * 1024 * 1024 * 1024 * 1024  # 5 TiB
MAX_STREAM_OBJECT_SIZE = MAX_PARTS * MIN_PART_SIZE
DEFAULT_CONTENT_TYPE = "application/octet-stream"

_EXTRA_CHUNK_SIZE = 64 * 1024
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def calculate_multipart_size(size: int) -> PartSizing:
    """Compute the part layout for an object of the given size.

    The part size is ``ceil(size / 9999)`` rounded up to a multiple of
    5 MiB, so it is never below 5 MiB and the part count never exceeds
    10000.

    Args:
        size: Object size in bytes, or -1 when unknown (the layout for
            ``MAX_STREAM_OBJECT_SIZE`` is used).

    Returns:
        ``PartSizing(part_size, part_count, last_part_size)``.

    Raises:
        EntityTooLarge: If size exceeds 5 TiB.
        InvalidArgument: If size is negative other than -1.
    """
    if size == -1:
        size = MAX_STREAM_OBJECT_SIZE
    if size < 0:
        raise InvalidArgument(f"Object size must be >= 0 or -1 for unknown, got {size}")
    if size > MAX_MULTIPART_OBJECT_SIZE:
        raise EntityTooLarge(size, MAX_MULTIPART_OBJECT_SIZE)

    part_size = -(-size // (MAX_PARTS - 1))
    part_size = -(-part_size // MIN_PART_SIZE) * MIN_PART_SIZE
    part_size = max(part_size, MIN_PART_SIZE)
    part_count = max(1, -(-size // part_size))
    last_part_size = size - (part_count - 1) * part_size
    return PartSizing(part_size, part_count, last_part_size)


async def _read(stream, size: int) -> bytes:
    chunk = stream.read(size)
    if inspect.isawaitable(chunk):
        chunk = await chunk
    return chunk


async def read_full(stream, size: int) -> bytes | None:
    """Read until size bytes are collected or the stream is exhausted.

    Works with both blocking (``read`` returns bytes) and async (``read``
    returns an awaitable) file-like objects.

    Returns:
        The bytes read, shorter than size if the stream ended early, or
        None if no bytes at all were available.
    """
    buffer = bytearray()
    while len(buffer) < size:
        chunk = await _read(stream, size - len(buffer))
        if not chunk:
            break
        buffer.extend(chunk)
    if not buffer:
        return None
    return bytes(buffer)


async def _peek_extra(stream) -> int:
    """Read at most one chunk past the declared end; return its length.

    Any non-zero result proves the stream is longer than declared, so the
    rest of the stream is left unread.
    """
    chunk = await _read(stream, _EXTRA_CHUNK_SIZE)
    return len(chunk or b"")


# ---------------------------------------------------------------------------
# Uploader
# ---------------------------------------------------------------------------


class MultipartUploader:
    """Uploads objects through single PUTs or resumable multipart uploads.

    Attributes:
        client: The owning ``S3Client``; all requests go through its
            ``_call`` pipeline.
    """

    def __init__(self, client: S3Client) -> None:
        self.client = client

    # -- Low-level calls ----------------------------------------------------

    async def new_multipart_upload(
        self,
        bucket: str,
        key: str,
        content_type: str | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> str:
        """Start a multipart upload.

        Implements: POST /{bucket}/{key}?uploads

        Returns:
            The server-assigned upload id.
        """
        response = await self.client._call(
            "POST",
            bucket,
            key,
            query={"uploads": ""},
            headers=dict(headers or {}),
            content_type=content_type or DEFAULT_CONTENT_TYPE,
        )
        upload_id = parse_initiate_multipart_upload(response.content)
        logger.info(
            "Initiated multipart upload %s for %s/%s",
            upload_id,
            bucket,
            key,
            extra={"bucket": bucket, "key": key, "upload_id": upload_id},
        )
        return upload_id

    async def upload_part(self, bucket: str, key: str, upload_id: str, part_number: int, data: bytes) -> str:
        """Upload one part.

        Implements: PUT /{bucket}/{key}?partNumber={n}&uploadId={id}

        Returns:
            The part ETag with quotes removed.
        """
        validate_part_number(part_number)
        response = await self.client._call(
            "PUT",
            bucket,
            key,
            query={"partNumber": str(part_number), "uploadId": upload_id},
            body=data,
        )
        etag = strip_etag(response.headers.get("etag"))
        metrics.record_part(skipped=False)
        logger.debug(
            "Uploaded part %d (%d bytes) of %s/%s",
            part_number,
            len(data),
            bucket,
            key,
            extra={"bucket": bucket, "key": key, "upload_id": upload_id, "part_number": part_number},
        )
        return etag

    async def complete_multipart_upload(
        self, bucket: str, key: str, upload_id: str, etags: Mapping[int, str]
    ) -> str:
        """Assemble the uploaded parts into the final object.

        Implements: POST /{bucket}/{key}?uploadId={id}

        Args:
            etags: Part number -> ETag; parts are listed in ascending order.

        Returns:
            The ETag of the assembled object.
        """
        body = render_complete_multipart_upload(etags).encode("utf-8")
        response = await self.client._call(
            "POST",
            bucket,
            key,
            query={"uploadId": upload_id},
            body=body,
            content_type="application/xml",
        )
        etag = parse_complete_multipart_upload(response.content)
        logger.info(
            "Completed multipart upload %s for %s/%s (%d parts)",
            upload_id,
            bucket,
            key,
            len(etags),
            extra={"bucket": bucket, "key": key, "upload_id": upload_id},
        )
        return etag

    async def abort_multipart_upload(self, bucket: str, key: str, upload_id: str) -> None:
        """Implements: DELETE /{bucket}/{key}?uploadId={id}"""
        await self.client._call("DELETE", bucket, key, query={"uploadId": upload_id})
        logger.info(
            "Aborted multipart upload %s for %s/%s",
            upload_id,
            bucket,
            key,
            extra={"bucket": bucket, "key": key, "upload_id": upload_id},
        )

    async def list_parts(self, bucket: str, key: str, upload_id: str) -> AsyncIterator[Part]:
        """Iterate over the uploaded parts, fetching one page per request.

        Implements: GET /{bucket}/{key}?uploadId={id}
        """
        marker = 0
        while True:
            query = {"uploadId": upload_id}
            if marker:
                query["part-number-marker"] = str(marker)
            response = await self.client._call("GET", bucket, key, query=query)
            page = parse_list_parts(response.content)
            for part in page.parts:
                yield part
            if not page.is_truncated or page.next_part_number_marker <= marker:
                break
            marker = page.next_part_number_marker

    async def find_latest_upload(self, bucket: str, key: str) -> Upload | None:
        """Return the most recently initiated incomplete upload of exactly key."""
        latest: Upload | None = None
        async for upload in self.client.list_incomplete_uploads(bucket, prefix=key, recursive=True):
            if upload.key != key:
                continue
            if latest is None or (upload.initiated_at or _EPOCH) > (latest.initiated_at or _EPOCH):
                latest = upload
        return latest

    # -- put_object ---------------------------------------------------------

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
        """Upload stream as bucket/key.

        Args:
            bucket: Target bucket.
            key: Target object key.
            stream: Object with ``read(n)``, blocking or async.
            size: Exact number of bytes the stream yields, or -1 if unknown.
            content_type: Content-Type of the object.
            headers: Extra request headers (e.g. ``x-amz-meta-*``).
            cancel_event: When set, the upload stops before the next part
                and raises ``UploadCancelled``; the upload stays resumable.

        Returns:
            A ``PutObjectResult`` describing what was sent.

        Raises:
            UnexpectedShortRead: Single PUT path, stream shorter than size.
            SizeMismatch: Stream length differs from size.
            EntityTooLarge: size is over 5 TiB, or an unknown-size stream
                exceeds ``MAX_STREAM_OBJECT_SIZE``.
            UploadCancelled: cancel_event was set.
        """
        validate_bucket_name(bucket)
        validate_object_name(key)
        if size is None:
            size = -1

        if 0 <= size < MIN_PART_SIZE:
            data = await read_full(stream, size) or b""
            if len(data) < size:
                raise UnexpectedShortRead(len(data), size)
            extra = await _peek_extra(stream)
            if extra:
                raise SizeMismatch(bucket, key, size, size + extra)
            return await self._put_single(bucket, key, data, content_type, headers)

        sizing = calculate_multipart_size(size)
        first_part = None
        if size == -1:
            first_part = await read_full(stream, sizing.part_size) or b""
            if len(first_part) < sizing.part_size:
                return await self._put_single(bucket, key, first_part, content_type, headers)

        return await self._put_multipart(
            bucket, key, stream, size, sizing, first_part, content_type, headers, cancel_event
        )

    async def _put_single(
        self,
        bucket: str,
        key: str,
        data: bytes,
        content_type: str | None,
        headers: Mapping[str, str] | None,
    ) -> PutObjectResult:
        response = await self.client._call(
            "PUT",
            bucket,
            key,
            headers=dict(headers or {}),
            body=data,
            content_type=content_type or DEFAULT_CONTENT_TYPE,
        )
        etag = strip_etag(response.headers.get("etag"))
        logger.info(
            "Uploaded %s/%s (%d bytes) in a single PUT",
            bucket,
            key,
            len(data),
            extra={"bucket": bucket, "key": key},
        )
        return PutObjectResult(bucket=bucket, key=key, etag=etag, size=len(data))

    async def _put_multipart(
        self,
        bucket: str,
        key: str,
        stream,
        size: int,
        sizing: PartSizing,
        first_part: bytes | None,
        content_type: str | None,
        headers: Mapping[str, str] | None,
        cancel_event: asyncio.Event | None,
    ) -> PutObjectResult:
        unknown_size = size == -1

        existing: dict[int, Part] = {}
        upload = await self.find_latest_upload(bucket, key)
        if upload is not None:
            upload_id = upload.upload_id
            async for part in self.list_parts(bucket, key, upload_id):
                existing[part.part_number] = part
            logger.info(
                "Resuming multipart upload %s for %s/%s (%d parts on server)",
                upload_id,
                bucket,
                key,
                len(existing),
                extra={"bucket": bucket, "key": key, "upload_id": upload_id},
            )
        else:
            upload_id = await self.new_multipart_upload(bucket, key, content_type, headers)

        etags: dict[int, str] = {}
        total = 0
        uploaded = 0
        skipped = 0
        semaphore = asyncio.Semaphore(self.client.part_concurrency)
        tasks: list[asyncio.Task] = []

        async def send_part(part_number: int, data: bytes) -> None:
            try:
                etags[part_number] = await self.upload_part(bucket, key, upload_id, part_number, data)
            finally:
                semaphore.release()

        try:
            for part_number in range(1, sizing.part_count + 1):
                if cancel_event is not None and cancel_event.is_set():
                    raise UploadCancelled(bucket, key, upload_id, part_number)

                expected_size = sizing.part_size
                if part_number == sizing.part_count and not unknown_size:
                    expected_size = sizing.last_part_size

                if part_number == 1 and first_part is not None:
                    data = first_part
                else:
                    data = await read_full(stream, expected_size)

                if data is None:
                    if unknown_size:
                        break
                    raise SizeMismatch(bucket, key, size, total)
                total += len(data)
                if len(data) < expected_size and not unknown_size:
                    raise SizeMismatch(bucket, key, size, total)

                previous = existing.get(part_number)
                if (
                    previous is not None
                    and previous.size == len(data)
                    and previous.etag == hashlib.md5(data).hexdigest()
                ):
                    etags[part_number] = previous.etag
                    skipped += 1
                    metrics.record_part(skipped=True)
                    logger.debug(
                        "Part %d of %s/%s already uploaded, skipping",
                        part_number,
                        bucket,
                        key,
                        extra={"bucket": bucket, "key": key, "upload_id": upload_id, "part_number": part_number},
                    )
                else:
                    self._raise_failed(tasks)
                    await semaphore.acquire()
                    tasks.append(asyncio.create_task(send_part(part_number, data)))
                    uploaded += 1

                if unknown_size and len(data) < expected_size:
                    break
            else:
                extra = await _peek_extra(stream)
                if extra:
                    if unknown_size:
                        raise EntityTooLarge(total + extra, MAX_STREAM_OBJECT_SIZE)
                    raise SizeMismatch(bucket, key, size, total + extra)

            await asyncio.gather(*tasks)
        except UploadCancelled:
            # Parts already in flight finish on their own.
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.warning(
                "Multipart upload %s for %s/%s cancelled",
                upload_id,
                bucket,
                key,
                extra={"bucket": bucket, "key": key, "upload_id": upload_id},
            )
            raise
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        # Stale parts past the new part count are left out of the completion.
        completed = {number: etag for number, etag in etags.items() if number <= sizing.part_count}
        etag = await self.complete_multipart_upload(bucket, key, upload_id, completed)
        return PutObjectResult(
            bucket=bucket,
            key=key,
            etag=etag,
            size=total,
            upload_id=upload_id,
            parts_uploaded=uploaded,
            parts_skipped=skipped,
        )

    @staticmethod
    def _raise_failed(tasks: list[asyncio.Task]) -> None:
        for task in tasks:
            if task.done() and not task.cancelled() and task.exception() is not None:
                raise task.exception()
