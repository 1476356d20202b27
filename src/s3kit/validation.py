"""Client-side input validation for s3kit.

These checks run before any request is built, so a bad bucket name or an
out-of-range expiry fails fast without touching the network. Each function
raises a ``ClientInputError`` subclass on invalid input.
"""

import re

from s3kit.errors import InvalidArgument, InvalidBucketName, InvalidExpiry, InvalidObjectName

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# S3 bucket naming rules:
#   - 3-63 characters
#   - lowercase letters, digits, hyphens, and periods
#   - must start and end with a letter or digit
#   - no consecutive periods ("..") allowed

_BUCKET_RE = re.compile(r"^[a-z0-9][a-z0-9.\-]{1,61}[a-z0-9]$")

MAX_OBJECT_NAME_BYTES = 1024
MIN_EXPIRY_SECONDS = 1
MAX_EXPIRY_SECONDS = 604800  # 7 days
MAX_PART_NUMBER = 10000


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def validate_bucket_name(name: str | None) -> None:
    """Validate a bucket name against S3 naming rules.

    Args:
        name: The candidate bucket name.

    Raises:
        InvalidBucketName: With a reason naming the violated rule.
    """
    if not name:
        raise InvalidBucketName(name or "", "Bucket name cannot be empty.")
    if len(name) < 3:
        raise InvalidBucketName(name, "Bucket name cannot be smaller than 3 characters.")
    if len(name) > 63:
        raise InvalidBucketName(name, "Bucket name cannot be greater than 63 characters.")
    if name.startswith(".") or name.endswith("."):
        raise InvalidBucketName(name, "Bucket name cannot start or end with a '.' dot.")
    if any(c.isupper() for c in name):
        raise InvalidBucketName(name, "Bucket name cannot have upper case characters.")
    if ".." in name:
        raise InvalidBucketName(name, "Bucket name cannot have successive periods.")
    if not _BUCKET_RE.match(name):
        raise InvalidBucketName(name, "Bucket name contains invalid characters.")


def validate_object_name(key: str | None) -> None:
    """Validate an object key.

    Raises:
        InvalidObjectName: If the key is empty, blank, or longer than 1024
            bytes when UTF-8 encoded.
    """
    if not key or not key.strip():
        raise InvalidObjectName(key or "", "Object name cannot be empty.")
    if len(key.encode("utf-8")) > MAX_OBJECT_NAME_BYTES:
        raise InvalidObjectName(key, "Object name cannot be greater than 1024 bytes.")


def validate_expiry(expires: int) -> None:
    """Validate a presigned URL expiry in seconds.

    Raises:
        InvalidExpiry: If expires is not an integer in [1, 604800].
    """
    if isinstance(expires, bool) or not isinstance(expires, int):
        raise InvalidExpiry(expires)
    if expires < MIN_EXPIRY_SECONDS or expires > MAX_EXPIRY_SECONDS:
        raise InvalidExpiry(expires)


def validate_part_number(part_number: int) -> None:
    if part_number < 1 or part_number > MAX_PART_NUMBER:
        raise InvalidArgument(f"Part number must be an integer between 1 and {MAX_PART_NUMBER}, inclusive")
