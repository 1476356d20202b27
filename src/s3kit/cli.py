"""CLI entry point for s3kit."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from s3kit.client import S3Client
from s3kit.config import ClientConfig, load_config
from s3kit.errors import S3KitError
from s3kit.logging_config import configure_logging
from s3kit.operations.object import DEFAULT_EXPIRY

logger = logging.getLogger("s3kit")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Argument list to parse. Defaults to sys.argv[1:].

    Returns:
        Parsed argument namespace.
    """
    parser = argparse.ArgumentParser(
        prog="s3kit",
        description="s3kit - client for S3-compatible object storage",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("s3kit.yaml"),
        help="Path to YAML configuration file (default: s3kit.yaml)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides config, default: INFO)",
    )
    parser.add_argument(
        "--log-format",
        type=str,
        default=None,
        choices=["text", "json"],
        help="Log format: 'text' (human-readable) or 'json' (structured)",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    put = commands.add_parser("put", help="Upload a file (resumes an interrupted upload)")
    put.add_argument("bucket")
    put.add_argument("key")
    put.add_argument("file", type=Path)
    put.add_argument("--content-type", default=None)

    presign = commands.add_parser("presign", help="Print a presigned URL")
    presign.add_argument("bucket")
    presign.add_argument("key")
    presign.add_argument("--expires", type=int, default=DEFAULT_EXPIRY, help="Seconds (1-604800)")
    presign.add_argument("--method", choices=["GET", "PUT"], default="GET")

    uploads = commands.add_parser("uploads", help="List incomplete multipart uploads")
    uploads.add_argument("bucket")
    uploads.add_argument("--prefix", default="")

    abort = commands.add_parser("abort", help="Abort incomplete uploads of a key")
    abort.add_argument("bucket")
    abort.add_argument("key")

    return parser.parse_args(argv)


async def run(args: argparse.Namespace, config: ClientConfig) -> int:
    """Execute the selected subcommand. Returns the process exit code."""
    async with S3Client.from_config(config) as client:
        if args.command == "put":
            size = args.file.stat().st_size
            with open(args.file, "rb") as fh:
                result = await client.put_object(
                    args.bucket, args.key, fh, size, content_type=args.content_type
                )
            print(f"{result.bucket}/{result.key} etag={result.etag} size={result.size}")
            if result.upload_id:
                print(f"parts uploaded={result.parts_uploaded} skipped={result.parts_skipped}")
        elif args.command == "presign":
            if args.method == "PUT":
                url = await client.presigned_put_object(args.bucket, args.key, expires=args.expires)
            else:
                url = await client.presigned_get_object(args.bucket, args.key, expires=args.expires)
            print(url)
        elif args.command == "uploads":
            async for upload in client.list_incomplete_uploads(args.bucket, prefix=args.prefix):
                print(f"{upload.initiated}\t{upload.upload_id}\t{upload.key}")
        elif args.command == "abort":
            count = await client.remove_incomplete_upload(args.bucket, args.key)
            print(f"aborted {count} upload(s)")
    return 0


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the s3kit CLI.

    Loads configuration, applies CLI overrides, and runs the subcommand.

    Args:
        argv: Argument list to parse. Defaults to sys.argv[1:].
    """
    args = parse_args(argv)

    # Use a basic stderr logger for config-loading errors
    logging.basicConfig(level=logging.INFO, stream=sys.stderr)

    if args.config.exists():
        try:
            config = load_config(args.config)
        except Exception as exc:
            logger.error("Failed to load config: %s", exc)
            sys.exit(1)
    else:
        config = ClientConfig()

    if args.log_level is not None:
        config.logging.level = args.log_level
    if args.log_format is not None:
        config.logging.format = args.log_format

    configure_logging(level=config.logging.level, fmt=config.logging.format)

    try:
        code = asyncio.run(run(args, config))
    except S3KitError as exc:
        logger.error("%s", exc)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
