"""Tests for multipart upload orchestration.

Tests cover:
- Part size calculation (limits, rounding, unknown size)
- Single PUT for small objects and short unknown-size streams
- New multipart uploads split into parts and completed in order
- Resuming an interrupted upload (full skip, partial re-upload)
- Choosing the most recent incomplete upload of the exact key
- Declared size vs. stream length mismatches
- Cancellation and concurrent part uploads
- Low-level calls: list parts pagination, abort
"""

import asyncio
import hashlib
import io
import random
from datetime import timedelta

import httpx
import pytest
from conftest import BUCKET
from fake_s3 import BASE_TIME

from s3kit.errors import (
    EntityTooLarge,
    InvalidArgument,
    InvalidBucketName,
    MalformedResponse,
    NoSuchUpload,
    S3Error,
    SizeMismatch,
    UnexpectedShortRead,
    UploadCancelled,
)
from s3kit.models import Upload
from s3kit.multipart import (
    MAX_MULTIPART_OBJECT_SIZE,
    MAX_STREAM_OBJECT_SIZE,
    MIN_PART_SIZE,
    calculate_multipart_size,
    read_full,
)

KEY = "large/object.bin"


def _payload(size: int, seed: int = 0) -> bytes:
    """Deterministic pseudo-random test data."""
    return random.Random(seed).randbytes(size)


def _parts(data: bytes, part_size: int = MIN_PART_SIZE) -> dict[int, bytes]:
    return {
        number: data[offset:offset + part_size]
        for number, offset in enumerate(range(0, len(data), part_size), start=1)
    }


class AsyncReader:
    """Async file-like wrapper over bytes."""

    def __init__(self, data: bytes) -> None:
        self._buffer = io.BytesIO(data)

    async def read(self, size: int = -1) -> bytes:
        await asyncio.sleep(0)
        return self._buffer.read(size)


class EndlessReader:
    """Blocking reader that never reaches EOF and counts reads."""

    def __init__(self) -> None:
        self.reads = 0

    def read(self, size: int = -1) -> bytes:
        self.reads += 1
        return b"z" * size


# ---- Part size calculation -------------------------------------------------


class TestCalculateMultipartSize:
    """Test part layout computation."""

    def test_one_hundred_gigabytes(self):
        sizing = calculate_multipart_size(100_000_000_000)
        assert sizing.part_size == 10485760
        assert sizing.part_count == 9537
        assert sizing.last_part_size == 100_000_000_000 - 9536 * 10485760

    def test_small_object_single_minimum_part(self):
        sizing = calculate_multipart_size(1024)
        assert sizing == (MIN_PART_SIZE, 1, 1024)

    def test_zero_size(self):
        sizing = calculate_multipart_size(0)
        assert sizing.part_size == MIN_PART_SIZE
        assert sizing.part_count == 1
        assert sizing.last_part_size == 0

    def test_exact_multiple(self):
        sizing = calculate_multipart_size(3 * MIN_PART_SIZE)
        assert sizing == (MIN_PART_SIZE, 3, MIN_PART_SIZE)

    def test_part_size_multiple_of_minimum(self):
        for size in (MIN_PART_SIZE * 10001, 7 * 1024**4 // 2, MAX_MULTIPART_OBJECT_SIZE):
            sizing = calculate_multipart_size(size)
            assert sizing.part_size % MIN_PART_SIZE == 0
            assert sizing.part_count <= 10000
            assert 0 < sizing.last_part_size <= sizing.part_size
            assert (sizing.part_count - 1) * sizing.part_size + sizing.last_part_size == size

    def test_unknown_size_uses_stream_maximum(self):
        assert calculate_multipart_size(-1) == calculate_multipart_size(MAX_STREAM_OBJECT_SIZE)

    def test_too_large(self):
        with pytest.raises(EntityTooLarge):
            calculate_multipart_size(MAX_MULTIPART_OBJECT_SIZE + 1)

    def test_negative_size(self):
        with pytest.raises(InvalidArgument):
            calculate_multipart_size(-2)


class TestReadFull:
    async def test_collects_short_reads(self):
        class Trickle:
            def __init__(self):
                self.chunks = [b"ab", b"c", b"def"]

            def read(self, size):
                return self.chunks.pop(0) if self.chunks else b""

        assert await read_full(Trickle(), 5) == b"abcde"

    async def test_exhausted_stream_returns_none(self):
        assert await read_full(io.BytesIO(b""), 10) is None

    async def test_async_reader(self):
        assert await read_full(AsyncReader(b"hello world"), 5) == b"hello"


# ---- Single PUT path --------------------------------------------------------


class TestSinglePut:
    """Objects below the minimum part size go up in one PUT."""

    async def test_four_mebibytes_single_put(self, client, fake):
        data = _payload(4 * 1024 * 1024)
        result = await client.put_object(BUCKET, KEY, io.BytesIO(data), len(data))

        assert result.upload_id == ""
        assert result.size == len(data)
        assert result.etag == hashlib.md5(data).hexdigest()
        assert fake.calls_matching("POST", "uploads") == []
        assert fake.calls_matching("GET", "uploads") == []
        assert len(fake.calls_matching("PUT")) == 1
        assert fake.objects[BUCKET][KEY].data == data

    async def test_empty_object(self, client, fake):
        result = await client.put_object(BUCKET, "empty", io.BytesIO(b""), 0)
        assert result.size == 0
        assert fake.objects[BUCKET]["empty"].data == b""

    async def test_default_content_type(self, client, fake):
        await client.put_object(BUCKET, "a", io.BytesIO(b"x"), 1)
        assert fake.objects[BUCKET]["a"].content_type == "application/octet-stream"

    async def test_custom_headers_and_content_type(self, client, fake):
        await client.put_object(
            BUCKET,
            "a",
            io.BytesIO(b"x"),
            1,
            content_type="text/plain",
            headers={"x-amz-meta-owner": "alice"},
        )
        stored = fake.objects[BUCKET]["a"]
        assert stored.content_type == "text/plain"
        assert stored.metadata == {"owner": "alice"}

    async def test_stream_longer_than_size(self, client, fake):
        with pytest.raises(SizeMismatch) as exc_info:
            await client.put_object(BUCKET, KEY, io.BytesIO(b"x" * 15), 10)
        assert exc_info.value.expected == 10
        assert exc_info.value.actual == 15
        assert fake.calls_matching("PUT") == []

    async def test_endless_stream_fails_fast(self, client, fake):
        """Only one chunk past the declared size is read."""
        stream = EndlessReader()
        with pytest.raises(SizeMismatch) as exc_info:
            await client.put_object(BUCKET, KEY, stream, 10)
        assert exc_info.value.expected == 10
        assert exc_info.value.actual > 10
        assert stream.reads == 2
        assert fake.calls_matching("PUT") == []

    async def test_stream_shorter_than_size(self, client, fake):
        with pytest.raises(UnexpectedShortRead) as exc_info:
            await client.put_object(BUCKET, KEY, io.BytesIO(b"x" * 5), 10)
        assert exc_info.value.read == 5
        assert exc_info.value.expected == 10
        assert fake.calls_matching("PUT") == []

    async def test_unknown_size_short_stream(self, client, fake):
        result = await client.put_object(BUCKET, KEY, io.BytesIO(b"small"), -1)
        assert result.upload_id == ""
        assert result.size == 5
        assert fake.calls_matching("POST", "uploads") == []

    async def test_async_stream(self, client, fake):
        await client.put_object(BUCKET, KEY, AsyncReader(b"async data"), 10)
        assert fake.objects[BUCKET][KEY].data == b"async data"

    async def test_invalid_bucket_rejected_before_io(self, client, fake):
        with pytest.raises(InvalidBucketName):
            await client.put_object("Bad_Bucket", KEY, io.BytesIO(b"x"), 1)
        assert fake.calls == []


# ---- Multipart path ---------------------------------------------------------


class TestNewMultipartUpload:
    """Objects at or above the minimum part size use multipart uploads."""

    async def test_three_parts(self, client, fake):
        data = _payload(2 * MIN_PART_SIZE + 1000)
        result = await client.put_object(BUCKET, KEY, io.BytesIO(data), len(data))

        assert result.upload_id
        assert result.parts_uploaded == 3
        assert result.parts_skipped == 0
        assert result.size == len(data)
        assert [int(call.query["partNumber"]) for call in fake.part_uploads] == [1, 2, 3]
        assert [len(call.body) for call in fake.part_uploads] == [MIN_PART_SIZE, MIN_PART_SIZE, 1000]
        assert fake.objects[BUCKET][KEY].data == data
        assert fake.uploads == {}

    async def test_exactly_minimum_part_size(self, client, fake):
        data = _payload(MIN_PART_SIZE)
        result = await client.put_object(BUCKET, KEY, io.BytesIO(data), len(data))
        assert result.parts_uploaded == 1
        assert len(fake.calls_matching("POST", "uploads")) == 1

    async def test_completion_lists_parts_in_order(self, client, fake):
        data = _payload(2 * MIN_PART_SIZE + 1)
        await client.put_object(BUCKET, KEY, io.BytesIO(data), len(data))

        (complete,) = fake.calls_matching("POST", "uploadId")
        body = complete.body.decode()
        positions = [body.index(f"<PartNumber>{n}</PartNumber>") for n in (1, 2, 3)]
        assert positions == sorted(positions)
        assert f"&quot;{hashlib.md5(data[:MIN_PART_SIZE]).hexdigest()}&quot;" in body

    async def test_content_type_sent_on_initiate(self, client, fake):
        data = _payload(MIN_PART_SIZE)
        await client.put_object(BUCKET, KEY, io.BytesIO(data), len(data), content_type="video/mp4")
        (initiate,) = fake.calls_matching("POST", "uploads")
        assert initiate.headers["content-type"] == "video/mp4"

    async def test_unknown_size_multipart(self, client, fake):
        part_size = calculate_multipart_size(-1).part_size
        data = _payload(part_size + 100)
        result = await client.put_object(BUCKET, KEY, io.BytesIO(data), -1)

        assert result.parts_uploaded == 2
        assert result.size == len(data)
        assert [len(call.body) for call in fake.part_uploads] == [part_size, 100]
        assert fake.objects[BUCKET][KEY].data == data

    async def test_stream_shorter_than_declared(self, client, fake):
        data = _payload(2 * MIN_PART_SIZE + 5)
        with pytest.raises(SizeMismatch) as exc_info:
            await client.put_object(BUCKET, KEY, io.BytesIO(data), 2 * MIN_PART_SIZE + 10)
        assert exc_info.value.expected == 2 * MIN_PART_SIZE + 10
        assert exc_info.value.actual == len(data)
        assert fake.calls_matching("POST", "uploadId") == []

    async def test_stream_longer_than_declared(self, client, fake):
        declared = 2 * MIN_PART_SIZE + 10
        data = _payload(declared + 10)
        with pytest.raises(SizeMismatch) as exc_info:
            await client.put_object(BUCKET, KEY, io.BytesIO(data), declared)
        assert exc_info.value.expected == declared
        assert exc_info.value.actual == declared + 10
        assert fake.calls_matching("POST", "uploadId") == []

    async def test_endless_stream_stops_after_last_part(self, client, fake):
        stream = EndlessReader()
        declared = MIN_PART_SIZE + 10
        with pytest.raises(SizeMismatch) as exc_info:
            await client.put_object(BUCKET, KEY, stream, declared)
        assert exc_info.value.expected == declared
        assert exc_info.value.actual > declared
        # One read per part plus one chunk past the end.
        assert stream.reads == 3
        assert fake.calls_matching("POST", "uploadId") == []

    async def test_failed_part_keeps_upload_for_resume(self, client, fake):
        data = _payload(2 * MIN_PART_SIZE + 10)
        fake.failed_parts = {2}
        with pytest.raises(S3Error) as exc_info:
            await client.put_object(BUCKET, KEY, io.BytesIO(data), len(data))
        assert exc_info.value.code == "InternalError"
        assert len(fake.uploads) == 1
        assert KEY not in fake.objects[BUCKET]


class TestResume:
    """Resuming reuses parts whose size and MD5 match the new data."""

    async def test_all_parts_present_sends_no_parts(self, client, fake):
        data = _payload(2 * MIN_PART_SIZE + 1000)
        upload_id = fake.seed_upload(BUCKET, KEY, _parts(data))

        result = await client.put_object(BUCKET, KEY, io.BytesIO(data), len(data))

        assert fake.part_uploads == []
        assert fake.calls_matching("POST", "uploads") == []
        assert result.upload_id == upload_id
        assert result.parts_uploaded == 0
        assert result.parts_skipped == 3
        assert fake.objects[BUCKET][KEY].data == data

    async def test_only_mismatched_part_reuploaded(self, client, fake):
        data = _payload(2 * MIN_PART_SIZE + 1000)
        stale = _parts(data)
        stale[2] = _payload(MIN_PART_SIZE, seed=99)
        fake.seed_upload(BUCKET, KEY, stale)

        result = await client.put_object(BUCKET, KEY, io.BytesIO(data), len(data))

        assert [int(call.query["partNumber"]) for call in fake.part_uploads] == [2]
        assert result.parts_uploaded == 1
        assert result.parts_skipped == 2
        assert fake.objects[BUCKET][KEY].data == data

    async def test_missing_parts_uploaded(self, client, fake):
        data = _payload(2 * MIN_PART_SIZE + 1000)
        parts = _parts(data)
        fake.seed_upload(BUCKET, KEY, {1: parts[1]})

        result = await client.put_object(BUCKET, KEY, io.BytesIO(data), len(data))

        assert [int(call.query["partNumber"]) for call in fake.part_uploads] == [2, 3]
        assert result.parts_skipped == 1

    async def test_part_with_different_size_reuploaded(self, client, fake):
        data = _payload(2 * MIN_PART_SIZE + 1000)
        parts = _parts(data)
        parts[3] = parts[3][:500]
        fake.seed_upload(BUCKET, KEY, parts)

        await client.put_object(BUCKET, KEY, io.BytesIO(data), len(data))

        assert [int(call.query["partNumber"]) for call in fake.part_uploads] == [3]
        assert fake.objects[BUCKET][KEY].data == data

    async def test_latest_upload_chosen(self, client, fake):
        data = _payload(MIN_PART_SIZE + 10)
        fake.seed_upload(BUCKET, KEY, {}, initiated=BASE_TIME)
        newest = fake.seed_upload(BUCKET, KEY, _parts(data), initiated=BASE_TIME + timedelta(hours=1))
        fake.seed_upload(BUCKET, KEY, {}, initiated=BASE_TIME - timedelta(hours=1))

        result = await client.put_object(BUCKET, KEY, io.BytesIO(data), len(data))

        assert result.upload_id == newest
        assert fake.part_uploads == []

    async def test_upload_of_other_key_with_same_prefix_ignored(self, client, fake):
        data = _payload(MIN_PART_SIZE + 10)
        other = fake.seed_upload(BUCKET, KEY + ".bak", _parts(data))

        result = await client.put_object(BUCKET, KEY, io.BytesIO(data), len(data))

        assert result.upload_id != other
        assert len(fake.calls_matching("POST", "uploads")) == 1
        assert len(fake.part_uploads) == 2

    async def test_resume_after_failure(self, client, fake):
        data = _payload(2 * MIN_PART_SIZE + 10)
        fake.failed_parts = {3}
        with pytest.raises(S3Error):
            await client.put_object(BUCKET, KEY, io.BytesIO(data), len(data))
        first_attempt = len(fake.part_uploads)

        fake.failed_parts = set()
        result = await client.put_object(BUCKET, KEY, io.BytesIO(data), len(data))

        assert [int(call.query["partNumber"]) for call in fake.part_uploads[first_attempt:]] == [3]
        assert result.parts_skipped == 2
        assert fake.objects[BUCKET][KEY].data == data

    async def test_stale_parts_beyond_new_count_not_completed(self, client, fake):
        data = _payload(MIN_PART_SIZE + 10)
        parts = _parts(data)
        parts[3] = b"leftover"
        fake.seed_upload(BUCKET, KEY, parts)

        await client.put_object(BUCKET, KEY, io.BytesIO(data), len(data))

        (complete,) = fake.calls_matching("POST", "uploadId")
        assert "<PartNumber>3</PartNumber>" not in complete.body.decode()
        assert fake.objects[BUCKET][KEY].data == data


class TestCancellation:
    async def test_cancel_before_first_part(self, client, fake):
        data = _payload(MIN_PART_SIZE + 10)
        event = asyncio.Event()
        event.set()

        with pytest.raises(UploadCancelled) as exc_info:
            await client.put_object(BUCKET, KEY, io.BytesIO(data), len(data), cancel_event=event)

        assert exc_info.value.next_part == 1
        assert exc_info.value.upload_id in fake.uploads
        assert fake.part_uploads == []

    async def test_cancel_mid_upload_then_resume(self, client, fake):
        data = _payload(3 * MIN_PART_SIZE + 10)
        event = asyncio.Event()

        def cancel_after_first_part(call):
            if call.is_part_upload:
                event.set()

        fake.hook = cancel_after_first_part
        with pytest.raises(UploadCancelled) as exc_info:
            await client.put_object(BUCKET, KEY, io.BytesIO(data), len(data), cancel_event=event)

        sent = len(fake.part_uploads)
        assert 1 <= sent < 4
        assert exc_info.value.next_part == sent + 1
        assert KEY not in fake.objects[BUCKET]

        fake.hook = None
        result = await client.put_object(BUCKET, KEY, io.BytesIO(data), len(data))

        assert result.upload_id == exc_info.value.upload_id
        assert result.parts_skipped == sent
        assert result.parts_uploaded == 4 - sent
        assert fake.objects[BUCKET][KEY].data == data


class TestConcurrency:
    async def test_parts_uploaded_concurrently(self, make_client, fake):
        client = make_client(region="us-east-1", part_concurrency=2)
        fake.part_delay = 0.05
        data = _payload(3 * MIN_PART_SIZE + 1)

        result = await client.put_object(BUCKET, KEY, io.BytesIO(data), len(data))

        assert fake.max_parts_in_flight == 2
        assert result.parts_uploaded == 4
        assert fake.objects[BUCKET][KEY].data == data

    async def test_sequential_by_default(self, client, fake):
        fake.part_delay = 0.01
        data = _payload(2 * MIN_PART_SIZE + 1)
        await client.put_object(BUCKET, KEY, io.BytesIO(data), len(data))
        assert fake.max_parts_in_flight == 1


# ---- Low-level calls --------------------------------------------------------


class TestLowLevelCalls:
    async def test_list_parts_paginates(self, client, fake):
        upload_id = fake.seed_upload(BUCKET, KEY, {n: bytes([n]) * 10 for n in range(1, 6)})
        fake.max_parts = 2

        parts = [part async for part in client.multipart.list_parts(BUCKET, KEY, upload_id)]

        assert [part.part_number for part in parts] == [1, 2, 3, 4, 5]
        assert parts[0].etag == hashlib.md5(b"\x01" * 10).hexdigest()
        assert parts[0].size == 10
        markers = [call.query.get("part-number-marker") for call in fake.calls_matching("GET", "uploadId")]
        assert markers == [None, "2", "4"]

    async def test_abort(self, client, fake):
        upload_id = fake.seed_upload(BUCKET, KEY)
        await client.multipart.abort_multipart_upload(BUCKET, KEY, upload_id)
        assert upload_id not in fake.uploads

    async def test_abort_unknown_upload(self, client, fake):
        with pytest.raises(NoSuchUpload):
            await client.multipart.abort_multipart_upload(BUCKET, KEY, "missing")

    async def test_upload_part_rejects_bad_part_number(self, client, fake):
        with pytest.raises(InvalidArgument):
            await client.multipart.upload_part(BUCKET, KEY, "id", 10001, b"x")
        assert fake.calls == []

    async def test_remove_incomplete_upload(self, client, fake):
        fake.seed_upload(BUCKET, KEY)
        fake.seed_upload(BUCKET, KEY)
        keep = fake.seed_upload(BUCKET, KEY + "2")

        assert await client.remove_incomplete_upload(BUCKET, KEY) == 2
        assert list(fake.uploads) == [keep]

    async def test_list_incomplete_uploads_paginates(self, client, fake):
        ids = [fake.seed_upload(BUCKET, f"key-{n}") for n in range(5)]
        fake.max_uploads = 2

        uploads = [upload async for upload in client.list_incomplete_uploads(BUCKET)]

        assert sorted(upload.upload_id for upload in uploads) == sorted(ids)
        assert len(fake.calls_matching("GET", "uploads")) == 3

    def test_initiated_at(self):
        upload = Upload(key=KEY, upload_id="U1", initiated="2026-01-01T00:10:00.000Z")
        assert upload.initiated_at == BASE_TIME + timedelta(minutes=10)
        assert Upload(key=KEY, upload_id="U1").initiated_at is None

    async def test_unparseable_initiated_timestamp(self, make_client):
        """A bad Initiated value surfaces as MalformedResponse during resume."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                content=(
                    "<ListMultipartUploadsResult><IsTruncated>false</IsTruncated>"
                    f"<Upload><Key>{KEY}</Key><UploadId>U1</UploadId>"
                    "<Initiated>2026-01-01T00:00:00.000Z</Initiated></Upload>"
                    f"<Upload><Key>{KEY}</Key><UploadId>U2</UploadId>"
                    "<Initiated>yesterday</Initiated></Upload>"
                    "</ListMultipartUploadsResult>"
                ).encode(),
            )

        s3 = make_client(region="us-east-1", transport=httpx.MockTransport(handler))
        with pytest.raises(MalformedResponse):
            await s3.multipart.find_latest_upload(BUCKET, KEY)

    async def test_list_incomplete_uploads_stops_without_markers(self, make_client):
        """A truncated page with no next markers ends the listing."""
        requests = []

        def stuck(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if len(requests) > 5:
                return httpx.Response(500)
            return httpx.Response(
                200,
                content=b"<ListMultipartUploadsResult><IsTruncated>true</IsTruncated>"
                b"<Upload><Key>k</Key><UploadId>U1</UploadId></Upload>"
                b"</ListMultipartUploadsResult>",
            )

        s3 = make_client(region="us-east-1", transport=httpx.MockTransport(stuck))
        uploads = [upload async for upload in s3.list_incomplete_uploads(BUCKET)]

        assert [upload.upload_id for upload in uploads] == ["U1"]
        assert len(requests) == 1

    async def test_list_incomplete_uploads_stops_when_markers_repeat(self, make_client):
        requests = []

        def repeating(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if len(requests) > 5:
                return httpx.Response(500)
            return httpx.Response(
                200,
                content=b"<ListMultipartUploadsResult><IsTruncated>true</IsTruncated>"
                b"<NextKeyMarker>k</NextKeyMarker><NextUploadIdMarker>U1</NextUploadIdMarker>"
                b"</ListMultipartUploadsResult>",
            )

        s3 = make_client(region="us-east-1", transport=httpx.MockTransport(repeating))
        assert [upload async for upload in s3.list_incomplete_uploads(BUCKET)] == []
        assert len(requests) == 2
        assert requests[1].url.params["key-marker"] == "k"

    async def test_put_object_with_stuck_upload_listing(self, make_client):
        """Resume discovery cannot loop forever on a bad listing."""

        def handler(request: httpx.Request) -> httpx.Response:
            params = request.url.params
            if request.method == "GET" and "uploads" in params:
                return httpx.Response(
                    200, content=b"<ListMultipartUploadsResult><IsTruncated>true</IsTruncated></ListMultipartUploadsResult>"
                )
            if request.method == "POST" and "uploads" in params:
                return httpx.Response(
                    200, content=b"<InitiateMultipartUploadResult><UploadId>NEW</UploadId></InitiateMultipartUploadResult>"
                )
            if request.method == "PUT":
                return httpx.Response(200, headers={"ETag": '"e"'})
            return httpx.Response(
                200, content=b'<CompleteMultipartUploadResult><ETag>"done-2"</ETag></CompleteMultipartUploadResult>'
            )

        s3 = make_client(region="us-east-1", transport=httpx.MockTransport(handler))
        result = await s3.put_object(BUCKET, KEY, io.BytesIO(_payload(MIN_PART_SIZE + 1)), MIN_PART_SIZE + 1)

        assert result.upload_id == "NEW"
        assert result.etag == "done-2"
