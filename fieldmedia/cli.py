"""CLI for fieldmedia: check annotation documents, render them, manage the upload queue."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path


def _read_document(path: str):
    source = sys.stdin.read() if path == "-" else Path(path).read_text(encoding="utf-8")
    try:
        return json.loads(source)
    except json.JSONDecodeError as exc:
        print(f"{path}: not valid JSON ({exc})")
        sys.exit(1)


def _write_output(content: bytes | str, output: str):
    if output == "-":
        if isinstance(content, bytes):
            sys.stdout.buffer.write(content)
        else:
            sys.stdout.write(content)
        return
    if isinstance(content, str):
        content = content.encode("utf-8")
    Path(output).write_bytes(content)
    print(f"Wrote {output} ({len(content)} bytes)")


def cmd_validate(args):
    """Report errors and warnings for an annotation document."""
    from fieldmedia.services.annotation_validation import validate_annotation_data

    result = validate_annotation_data(_read_document(args.file))
    for error in result.errors:
        print(f"error: {error}")
    for warning in result.warnings:
        print(f"warning: {warning}")
    print("valid" if result.valid else "invalid")
    if not result.valid:
        sys.exit(1)


def cmd_sanitize(args):
    """Repair an annotation document and print the result."""
    from fieldmedia.services.annotation_validation import sanitize_annotation_data

    sanitized = sanitize_annotation_data(_read_document(args.file))
    _write_output(json.dumps(sanitized.to_wire(), indent=2) + "\n", args.output)


def cmd_render(args):
    """Flatten an annotation document to SVG or a raster image."""
    from fieldmedia.canvas import RasterRenderer, SvgRenderer
    from fieldmedia.services.annotation_validation import sanitize_annotation_data

    document = sanitize_annotation_data(_read_document(args.file))
    if args.format == "svg":
        renderer = SvgRenderer(scale=args.scale)
    else:
        renderer = RasterRenderer(scale=args.scale)
    if args.background:
        background = Path(args.background)
        renderer.set_background_image(
            background.read_bytes() if args.format != "svg" else background.resolve().as_uri()
        )
    renderer.mount()
    try:
        renderer.draw(document)
        _write_output(renderer.export(args.format), args.output)
    finally:
        renderer.unmount()


async def cmd_queue_status(args):
    """Print queue counts and any failed items."""
    from fieldmedia.schemas import UploadStatus
    from fieldmedia.services.queue_store import UploadQueueStore

    store = UploadQueueStore()
    try:
        status = await store.status()
        print(f"Pending:   {status.pending}")
        print(f"Uploading: {status.uploading}")
        print(f"Failed:    {status.failed}")
        print(f"Total:     {status.item_count} items, {status.total_bytes} bytes")
        for item in await store.get_by_status(UploadStatus.FAILED):
            print(f"  {item.id} {item.file_name} ({item.attempt_count} attempts): {item.last_error}")
    finally:
        await store.close()


async def cmd_retry_failed(args):
    """Put failed uploads back in the queue."""
    from fieldmedia.services.queue_store import UploadQueueStore

    store = UploadQueueStore()
    try:
        count = await store.retry_failed()
    finally:
        await store.close()
    print(f"Re-queued {count} failed uploads")


async def cmd_clear_failed(args):
    """Delete failed uploads from the queue."""
    from fieldmedia.services.queue_store import UploadQueueStore

    store = UploadQueueStore()
    try:
        count = await store.clear_failed()
    finally:
        await store.close()
    print(f"Removed {count} failed uploads")


def cmd_keygen(args):
    """Print a new key for encrypting queued files at rest."""
    from fieldmedia.services.encryption import generate_key

    print(generate_key())


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    parser = argparse.ArgumentParser(description="fieldmedia CLI")
    subparsers = parser.add_subparsers(dest="command")

    # validate
    va = subparsers.add_parser("validate", help="Validate an annotation document")
    va.add_argument("file", help="Annotation JSON file ('-' for stdin)")

    # sanitize
    sa = subparsers.add_parser("sanitize", help="Repair an annotation document")
    sa.add_argument("file", help="Annotation JSON file ('-' for stdin)")
    sa.add_argument("-o", "--output", default="-", help="Output file (default: stdout)")

    # render
    rn = subparsers.add_parser("render", help="Render an annotation document to an image")
    rn.add_argument("file", help="Annotation JSON file ('-' for stdin)")
    rn.add_argument("-f", "--format", choices=["svg", "png", "jpeg"], default="svg")
    rn.add_argument("-o", "--output", default="-", help="Output file (default: stdout)")
    rn.add_argument("--scale", type=float, default=1.0, help="Output scale factor")
    rn.add_argument("--background", default="", help="Photo to draw the annotations over")

    # queue
    subparsers.add_parser("queue-status", help="Show upload queue counts")
    subparsers.add_parser("retry-failed", help="Re-queue failed uploads")
    subparsers.add_parser("clear-failed", help="Delete failed uploads")

    # keygen
    subparsers.add_parser("keygen", help="Generate a FERNET_KEY for queue encryption")

    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "validate":
        cmd_validate(args)
    elif args.command == "sanitize":
        cmd_sanitize(args)
    elif args.command == "render":
        cmd_render(args)
    elif args.command == "queue-status":
        asyncio.run(cmd_queue_status(args))
    elif args.command == "retry-failed":
        asyncio.run(cmd_retry_failed(args))
    elif args.command == "clear-failed":
        asyncio.run(cmd_clear_failed(args))
    elif args.command == "keygen":
        cmd_keygen(args)


if __name__ == "__main__":
    main()
