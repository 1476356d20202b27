"""Endpoint parsing and Amazon S3 host helpers."""

import ipaddress
import re

import httpx

from s3kit.errors import InvalidEndpoint

AMAZON_ENDPOINT = "s3.amazonaws.com"
AMAZON_CHINA_ENDPOINT = "s3.cn-north-1.amazonaws.com.cn"

_REGION_IN_HOST_RE = re.compile(r"s3[.\-](.*?)\.amazonaws\.com$")
_REGIONAL_AMAZON_RE = re.compile(r"^s3[.\-][a-z0-9\-]+\.amazonaws\.com$")
_LABEL_RE = re.compile(r"^[A-Za-z0-9]([A-Za-z0-9_\-]*[A-Za-z0-9])?$")

# Regions still served by the legacy dash-style hostnames.
_LEGACY_REGION_HOSTS = {
    "us-east-1": AMAZON_ENDPOINT,
    "us-west-1": "s3-us-west-1.amazonaws.com",
    "us-west-2": "s3-us-west-2.amazonaws.com",
    "eu-west-1": "s3-eu-west-1.amazonaws.com",
    "ap-northeast-1": "s3-ap-northeast-1.amazonaws.com",
    "ap-northeast-2": "s3-ap-northeast-2.amazonaws.com",
    "ap-south-1": "s3-ap-south-1.amazonaws.com",
    "ap-southeast-1": "s3-ap-southeast-1.amazonaws.com",
    "ap-southeast-2": "s3-ap-southeast-2.amazonaws.com",
    "sa-east-1": "s3-sa-east-1.amazonaws.com",
    "cn-north-1": AMAZON_CHINA_ENDPOINT,
}


def get_region_from_endpoint(host: str) -> str | None:
    """Extract the region from an Amazon S3 hostname, or None.

    >>> get_region_from_endpoint("s3.eu-central-1.amazonaws.com")
    'eu-central-1'
    """
    match = _REGION_IN_HOST_RE.search(host)
    if match and match.group(1):
        return match.group(1)
    return None


def is_amazon_china_endpoint(host: str) -> bool:
    return host == AMAZON_CHINA_ENDPOINT


def is_amazon_endpoint(host: str) -> bool:
    """True for the global, regional, or China Amazon S3 hostnames."""
    if is_amazon_china_endpoint(host):
        return True
    return host == AMAZON_ENDPOINT or bool(_REGIONAL_AMAZON_RE.match(host))


def aws_s3_endpoint(region: str) -> str:
    """Hostname serving the given region."""
    if not region:
        return AMAZON_ENDPOINT
    return _LEGACY_REGION_HOSTS.get(region, f"s3.{region}.amazonaws.com")


def _is_valid_hostname(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
        return True
    except ValueError:
        pass
    if len(host) < 1 or len(host) > 253:
        return False
    return all(_LABEL_RE.match(label) and len(label) <= 63 for label in host.split("."))


def parse_endpoint(endpoint: str, secure: bool = True) -> httpx.URL:
    """Parse and validate a user-supplied endpoint.

    The endpoint may be a bare ``host[:port]`` (the scheme then follows
    ``secure``) or a full ``http(s)://host[:port]`` URL.

    Returns:
        The base URL with an empty path.

    Raises:
        InvalidEndpoint: For empty or invalid hostnames, a path or query
            component, a non-http scheme, or an Amazon host that is not an
            S3 endpoint.
    """
    if not endpoint or not endpoint.strip():
        raise InvalidEndpoint(endpoint or "", "Endpoint cannot be empty.")

    raw = endpoint if "://" in endpoint else f"{'https' if secure else 'http'}://{endpoint}"
    try:
        url = httpx.URL(raw)
    except httpx.InvalidURL as exc:
        raise InvalidEndpoint(endpoint, str(exc)) from exc

    if url.scheme not in ("http", "https"):
        raise InvalidEndpoint(endpoint, "Invalid scheme detected in endpoint.")
    if not url.host or not _is_valid_hostname(url.host):
        raise InvalidEndpoint(endpoint, "Invalid endpoint.")
    if url.path not in ("", "/"):
        raise InvalidEndpoint(endpoint, "No path allowed in endpoint.")
    if url.query:
        raise InvalidEndpoint(endpoint, "No query parameter allowed in endpoint.")
    if ".amazonaws.com" in url.host.lower() and not is_amazon_endpoint(url.host):
        raise InvalidEndpoint(endpoint, "For Amazon S3, host should be 's3.amazonaws.com' in endpoint.")

    return url.copy_with(path="/")


def is_virtual_host_style(endpoint_url: httpx.URL, bucket: str) -> bool:
    """Whether requests for bucket may use virtual-host style addressing.

    Dotted bucket names break TLS wildcard certificates, so they stay on
    path style over https. Only Amazon endpoints use virtual hosts.
    """
    if endpoint_url.scheme == "https" and "." in bucket:
        return False
    return is_amazon_endpoint(endpoint_url.host)
