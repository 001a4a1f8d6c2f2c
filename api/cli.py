#!/usr/bin/env python3
"""CLI for certificate renderer tasks.

Usage:
    python -m cli <command>

Commands:
    render      Render a batch from a JSON payload file ({certificate, participants})
    thumbnail   Render a thumbnail from a JSON payload file ({certificate, width, height})
    list        List stored artifacts under a key prefix
    fields      List the placeholder fields of a design payload ({certificate})
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def _read_payload(path: str) -> str:
    return Path(path).read_text(encoding="utf-8")


def cmd_render(payload_path: str) -> int:
    """Render every participant in a payload file and print the ledger."""
    from core.storage import get_storage
    from schemas import RenderRequest
    from services.render_service import render_batch

    try:
        payload = RenderRequest.model_validate_json(_read_payload(payload_path))
    except ValidationError as e:
        logger.error(f"Invalid render payload: {e}")
        return 2

    result = asyncio.run(
        render_batch(get_storage(), payload.certificate, payload.participants)
    )
    print(result.model_dump_json(indent=2))
    return 0


def cmd_thumbnail(payload_path: str) -> int:
    """Render a design thumbnail and print its key."""
    from core.storage import get_storage
    from rendering.scene import DEFAULT_THUMBNAIL_HEIGHT, DEFAULT_THUMBNAIL_WIDTH
    from schemas import ThumbnailRequest
    from services.render_service import render_design_thumbnail

    try:
        payload = ThumbnailRequest.model_validate_json(_read_payload(payload_path))
    except ValidationError as e:
        logger.error(f"Invalid thumbnail payload: {e}")
        return 2

    key = asyncio.run(
        render_design_thumbnail(
            get_storage(),
            payload.certificate,
            payload.width or DEFAULT_THUMBNAIL_WIDTH,
            payload.height or DEFAULT_THUMBNAIL_HEIGHT,
        )
    )
    print(key)
    return 0


def cmd_list(prefix: str) -> int:
    """List artifact keys under a prefix (e.g. a design id)."""
    from core.storage import get_storage

    keys = asyncio.run(get_storage().list(prefix))
    print(json.dumps(keys, indent=2))
    return 0


def cmd_fields(payload_path: str) -> int:
    """Print the participant fields a design expects, in document order."""
    from rendering.errors import MalformedDesignError
    from rendering.placeholders import placeholder_fields
    from schemas import ThumbnailRequest

    try:
        payload = ThumbnailRequest.model_validate_json(_read_payload(payload_path))
        fields = placeholder_fields(payload.certificate.design)
    except (ValidationError, MalformedDesignError) as e:
        logger.error(f"Invalid design payload: {e}")
        return 2

    print(json.dumps(fields, indent=2))
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Certificate renderer CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    render_parser = subparsers.add_parser(
        "render", help="Render a batch of certificates from a JSON payload"
    )
    render_parser.add_argument("payload", help="Path to the payload JSON file")

    thumbnail_parser = subparsers.add_parser(
        "thumbnail", help="Render a design thumbnail from a JSON payload"
    )
    thumbnail_parser.add_argument("payload", help="Path to the payload JSON file")

    list_parser = subparsers.add_parser("list", help="List stored artifacts")
    list_parser.add_argument("prefix", help="Key prefix, usually a design id")

    fields_parser = subparsers.add_parser(
        "fields", help="List the placeholder fields of a design"
    )
    fields_parser.add_argument("payload", help="Path to the payload JSON file")

    args = parser.parse_args()

    if args.command == "render":
        return cmd_render(args.payload)
    elif args.command == "thumbnail":
        return cmd_thumbnail(args.payload)
    elif args.command == "list":
        return cmd_list(args.prefix)
    elif args.command == "fields":
        return cmd_fields(args.payload)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
