"""s3kit: an async client for Amazon S3 and S3-compatible object storage."""

__version__ = "0.1.0"

from s3kit.auth import V4Authenticator
from s3kit.client import S3Client
from s3kit.config import ClientConfig, load_config
from s3kit.credentials import (
    ChainedProvider,
    CredentialsProvider,
    EnvAWSProvider,
    EnvMinioProvider,
    StaticProvider,
)
from s3kit.errors import (
    ClientInputError,
    S3ConnectionError,
    S3Error,
    S3KitError,
    SizeMismatch,
    UploadCancelled,
)
from s3kit.models import Credentials, PartSizing, PutObjectResult, S3Request
from s3kit.multipart import MultipartUploader, calculate_multipart_size
from s3kit.region_cache import BucketRegionCache
from s3kit.retry import ExponentialBackoff, no_retry

__all__ = [
    "__version__",
    "BucketRegionCache",
    "ChainedProvider",
    "ClientConfig",
    "ClientInputError",
    "Credentials",
    "CredentialsProvider",
    "calculate_multipart_size",
    "EnvAWSProvider",
    "EnvMinioProvider",
    "ExponentialBackoff",
    "load_config",
    "MultipartUploader",
    "no_retry",
    "PartSizing",
    "PutObjectResult",
    "S3Client",
    "S3ConnectionError",
    "S3Error",
    "S3KitError",
    "S3Request",
    "SizeMismatch",
    "StaticProvider",
    "UploadCancelled",
    "V4Authenticator",
]
