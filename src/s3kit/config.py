"""Configuration loading and Pydantic models for s3kit."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


class EndpointConfig(BaseModel):
    """Where the client connects."""

    endpoint: str = "localhost:9000"
    secure: bool = True
    region: str = ""


class CredentialsConfig(BaseModel):
    """Static credentials. Empty keys mean anonymous access."""

    access_key: str = ""
    secret_key: str = ""
    session_token: str = ""

    def __repr__(self) -> str:
        return f"CredentialsConfig(access_key={self.access_key!r}, secret_key='***')"


class TransportConfig(BaseModel):
    """HTTP timeout and retry settings."""

    timeout: float = 60.0
    max_retries: int = 0
    retry_base_delay: float = 0.5


class UploadConfig(BaseModel):
    """Multipart upload settings."""

    part_concurrency: int = 1


class LoggingConfig(BaseModel):
    """Logging level and output format."""

    level: str = "INFO"
    format: str = "text"


class MetricsConfig(BaseModel):
    enabled: bool = False


class ClientConfig(BaseModel):
    """Top-level s3kit configuration."""

    endpoint: EndpointConfig = Field(default_factory=EndpointConfig)
    credentials: CredentialsConfig = Field(default_factory=CredentialsConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)
    upload: UploadConfig = Field(default_factory=UploadConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)


def _parse_endpoint(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the endpoint section from YAML data into a dict for Pydantic."""
    if data is None:
        return {}
    return {
        "endpoint": data.get("endpoint", "localhost:9000"),
        "secure": data.get("secure", True),
        "region": data.get("region", "") or "",
    }


def _parse_credentials(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the credentials section from YAML data."""
    if data is None:
        return {}
    return {
        "access_key": data.get("access_key", "") or "",
        "secret_key": data.get("secret_key", "") or "",
        "session_token": data.get("session_token", "") or "",
    }


def _parse_transport(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the transport section from YAML data.

    Handles nested structure: transport.retry.max_retries -> max_retries (attempts after the first)
    """
    if data is None:
        return {}
    result: dict[str, Any] = {"timeout": data.get("timeout", 60.0)}
    retry_section = data.get("retry")
    if isinstance(retry_section, dict):
        result["max_retries"] = retry_section.get("max_retries", 0)
        result["retry_base_delay"] = retry_section.get("base_delay", 0.5)
    return result


def _parse_upload(data: dict[str, Any] | None) -> dict[str, Any]:
    if data is None:
        return {}
    return {"part_concurrency": data.get("part_concurrency", 1)}


def _parse_logging(data: dict[str, Any] | None) -> dict[str, Any]:
    if data is None:
        return {}
    return {
        "level": data.get("level", "INFO"),
        "format": data.get("format", "text"),
    }


def _parse_metrics(data: dict[str, Any] | None) -> dict[str, Any]:
    if data is None:
        return {}
    return {"enabled": data.get("enabled", False)}


def load_config(path: Path) -> ClientConfig:
    """Load a ClientConfig from a YAML file.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        A fully populated ClientConfig validated by Pydantic.

    Raises:
        FileNotFoundError: If the config file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
    """
    with open(path, "r") as fh:
        raw: dict[str, Any] = yaml.safe_load(fh) or {}

    return ClientConfig(
        endpoint=EndpointConfig(**_parse_endpoint(raw.get("endpoint"))),
        credentials=CredentialsConfig(**_parse_credentials(raw.get("credentials"))),
        transport=TransportConfig(**_parse_transport(raw.get("transport"))),
        upload=UploadConfig(**_parse_upload(raw.get("upload"))),
        logging=LoggingConfig(**_parse_logging(raw.get("logging"))),
        metrics=MetricsConfig(**_parse_metrics(raw.get("metrics"))),
    )
