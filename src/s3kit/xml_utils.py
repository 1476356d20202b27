"""S3 XML request rendering and response parsing helpers for s3kit."""

from collections.abc import Iterable, Mapping
from xml.etree import ElementTree
from xml.sax.saxutils import escape as _sax_escape

from s3kit.errors import MalformedResponse, S3Error
from s3kit.models import (
    Bucket,
    DeleteError,
    ListObjectsPage,
    ListPartsPage,
    ListUploadsPage,
    ObjectInfo,
    Part,
    Retention,
    Upload,
)

S3_NAMESPACE = "http://s3.amazonaws.com/doc/2006-03-01/"


def _escape_xml(value: str) -> str:
    """Escape special XML characters in a string value."""
    return _sax_escape(str(value))


def strip_etag(etag: str | None) -> str:
    """Remove the double quotes S3 wraps around ETag values."""
    return (etag or "").replace('"', "")


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


def render_complete_multipart_upload(etags: Mapping[int, str]) -> str:
    """Render a CompleteMultipartUpload request body.

    Args:
        etags: Part number -> ETag (with or without quotes).

    Returns:
        The XML body listing parts in ascending part number order.
    """
    parts = ["<CompleteMultipartUpload>"]
    for part_number in sorted(etags):
        parts.append("<Part>")
        parts.append(f"<PartNumber>{part_number}</PartNumber>")
        parts.append(f"<ETag>&quot;{_escape_xml(strip_etag(etags[part_number]))}&quot;</ETag>")
        parts.append("</Part>")
    parts.append("</CompleteMultipartUpload>")
    return "\n".join(parts)


def render_delete_objects(keys: Iterable[str], quiet: bool = True) -> str:
    """Render a multi-object Delete request body.

    Args:
        keys: Object keys to delete.
        quiet: If True, the server reports only failures.

    Returns:
        The XML body for POST ?delete.
    """
    parts = ["<Delete>", f"<Quiet>{str(quiet).lower()}</Quiet>"]
    for key in keys:
        parts.append(f"<Object><Key>{_escape_xml(key)}</Key></Object>")
    parts.append("</Delete>")
    return "\n".join(parts)


def render_create_bucket_configuration(region: str) -> str:
    """Render a CreateBucketConfiguration body.

    us-east-1 is the implicit default and takes no body, so "" is returned.
    """
    if not region or region == "us-east-1":
        return ""
    parts = [
        f'<CreateBucketConfiguration xmlns="{S3_NAMESPACE}">',
        f"<LocationConstraint>{_escape_xml(region)}</LocationConstraint>",
        "</CreateBucketConfiguration>",
    ]
    return "\n".join(parts)


def render_versioning_configuration(status: str, mfa_delete: str | None = None) -> str:
    parts = [
        f'<VersioningConfiguration xmlns="{S3_NAMESPACE}">',
        f"<Status>{_escape_xml(status)}</Status>",
    ]
    if mfa_delete:
        parts.append(f"<MfaDelete>{_escape_xml(mfa_delete)}</MfaDelete>")
    parts.append("</VersioningConfiguration>")
    return "\n".join(parts)


def render_retention(mode: str, retain_until: str) -> str:
    """Render an object lock Retention body.

    Args:
        mode: "GOVERNANCE" or "COMPLIANCE".
        retain_until: ISO 8601 timestamp.
    """
    parts = [
        f'<Retention xmlns="{S3_NAMESPACE}">',
        f"<Mode>{_escape_xml(mode)}</Mode>",
        f"<RetainUntilDate>{_escape_xml(retain_until)}</RetainUntilDate>",
        "</Retention>",
    ]
    return "\n".join(parts)


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


def _parse_root(body: bytes | str) -> tuple[ElementTree.Element, str]:
    """Parse an XML document and return its root and namespace prefix."""
    try:
        root = ElementTree.fromstring(body)
    except ElementTree.ParseError as exc:
        raise MalformedResponse(f"Response body is not well-formed XML: {exc}") from exc
    ns = ""
    if root.tag.startswith("{"):
        ns = root.tag[: root.tag.index("}") + 1]
    return root, ns


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _text(parent: ElementTree.Element, ns: str, name: str, default: str = "") -> str:
    elem = parent.find(f"{ns}{name}")
    if elem is None or elem.text is None:
        return default
    return elem.text


def _bool(parent: ElementTree.Element, ns: str, name: str) -> bool:
    return _text(parent, ns, name).strip().lower() == "true"


def _int(parent: ElementTree.Element, ns: str, name: str, default: int = 0) -> int:
    raw = _text(parent, ns, name).strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise MalformedResponse(f"Element {name} is not an integer: {raw!r}") from exc


def parse_error(body: bytes | str) -> dict[str, str]:
    """Parse an S3 <Error> body into a flat dict of element name -> text.

    Well-known keys are ``Code``, ``Message``, ``Resource``, ``RequestId``,
    ``HostId``; any other child elements are included as-is.

    Raises:
        MalformedResponse: If the body is not XML.
    """
    root, _ = _parse_root(body)
    return {_local_name(child.tag): (child.text or "") for child in root}


def parse_initiate_multipart_upload(body: bytes | str) -> str:
    """Return the UploadId from an InitiateMultipartUploadResult."""
    root, ns = _parse_root(body)
    upload_id = _text(root, ns, "UploadId")
    if not upload_id:
        raise MalformedResponse("InitiateMultipartUploadResult has no UploadId")
    return upload_id


def parse_complete_multipart_upload(body: bytes | str) -> str:
    """Return the object ETag from a CompleteMultipartUploadResult.

    S3 may answer a completion with status 200 and an <Error> body when
    assembly fails after the response has started; that is raised here.

    Raises:
        S3Error: If the body is an <Error> document.
    """
    root, ns = _parse_root(body)
    if _local_name(root.tag) == "Error":
        raise S3Error(
            code=_text(root, ns, "Code"),
            message=_text(root, ns, "Message"),
            http_status=200,
            resource=_text(root, ns, "Resource"),
            request_id=_text(root, ns, "RequestId"),
            host_id=_text(root, ns, "HostId"),
        )
    return strip_etag(_text(root, ns, "ETag"))


def parse_list_parts(body: bytes | str) -> ListPartsPage:
    root, ns = _parse_root(body)
    parts = [
        Part(
            part_number=_int(elem, ns, "PartNumber"),
            etag=strip_etag(_text(elem, ns, "ETag")),
            size=_int(elem, ns, "Size"),
            last_modified=_text(elem, ns, "LastModified"),
        )
        for elem in root.findall(f"{ns}Part")
    ]
    return ListPartsPage(
        bucket=_text(root, ns, "Bucket"),
        key=_text(root, ns, "Key"),
        upload_id=_text(root, ns, "UploadId"),
        parts=parts,
        is_truncated=_bool(root, ns, "IsTruncated"),
        next_part_number_marker=_int(root, ns, "NextPartNumberMarker"),
    )


def parse_list_multipart_uploads(body: bytes | str) -> ListUploadsPage:
    root, ns = _parse_root(body)
    uploads = [
        Upload(
            key=_text(elem, ns, "Key"),
            upload_id=_text(elem, ns, "UploadId"),
            initiated=_text(elem, ns, "Initiated"),
            storage_class=_text(elem, ns, "StorageClass", "STANDARD"),
        )
        for elem in root.findall(f"{ns}Upload")
    ]
    prefixes = [_text(elem, ns, "Prefix") for elem in root.findall(f"{ns}CommonPrefixes")]
    return ListUploadsPage(
        bucket=_text(root, ns, "Bucket"),
        uploads=uploads,
        common_prefixes=prefixes,
        is_truncated=_bool(root, ns, "IsTruncated"),
        next_key_marker=_text(root, ns, "NextKeyMarker"),
        next_upload_id_marker=_text(root, ns, "NextUploadIdMarker"),
    )


def parse_location_constraint(body: bytes | str) -> str:
    """Return the region from a GetBucketLocation response.

    An empty constraint means us-east-1; the legacy value ``EU`` means
    eu-west-1.
    """
    root, _ = _parse_root(body)
    location = (root.text or "").strip()
    if not location:
        return "us-east-1"
    if location == "EU":
        return "eu-west-1"
    return location


def parse_list_buckets(body: bytes | str) -> list[Bucket]:
    root, ns = _parse_root(body)
    container = root.find(f"{ns}Buckets")
    if container is None:
        return []
    return [
        Bucket(name=_text(elem, ns, "Name"), creation_date=_text(elem, ns, "CreationDate"))
        for elem in container.findall(f"{ns}Bucket")
    ]


def parse_list_objects_v2(body: bytes | str) -> ListObjectsPage:
    root, ns = _parse_root(body)
    objects = [
        ObjectInfo(
            key=_text(elem, ns, "Key"),
            size=_int(elem, ns, "Size"),
            etag=strip_etag(_text(elem, ns, "ETag")),
            last_modified=_text(elem, ns, "LastModified"),
            storage_class=_text(elem, ns, "StorageClass", "STANDARD"),
        )
        for elem in root.findall(f"{ns}Contents")
    ]
    for elem in root.findall(f"{ns}CommonPrefixes"):
        objects.append(ObjectInfo(key=_text(elem, ns, "Prefix"), is_prefix=True))
    return ListObjectsPage(
        bucket=_text(root, ns, "Name"),
        objects=objects,
        is_truncated=_bool(root, ns, "IsTruncated"),
        next_continuation_token=_text(root, ns, "NextContinuationToken"),
    )


def parse_delete_result(body: bytes | str) -> list[DeleteError]:
    """Return the per-key failures from a DeleteResult."""
    root, ns = _parse_root(body)
    return [
        DeleteError(
            key=_text(elem, ns, "Key"),
            code=_text(elem, ns, "Code"),
            message=_text(elem, ns, "Message"),
            version_id=_text(elem, ns, "VersionId"),
        )
        for elem in root.findall(f"{ns}Error")
    ]


def parse_versioning_configuration(body: bytes | str) -> dict[str, str]:
    """Return ``{"status": ..., "mfa_delete": ...}``; "" when never set."""
    root, ns = _parse_root(body)
    return {
        "status": _text(root, ns, "Status"),
        "mfa_delete": _text(root, ns, "MfaDelete"),
    }


def parse_retention(body: bytes | str) -> Retention:
    root, ns = _parse_root(body)
    return Retention(mode=_text(root, ns, "Mode"), retain_until=_text(root, ns, "RetainUntilDate"))
