#!/usr/bin/env python3
"""Threat canvas CLI - run the engine, inspect saved threat models."""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from pydantic import ValidationError

from canvas_core.analysis import summarize_document
from canvas_core.models import Document
from canvas_core.validation import validate_document, validation_summary

from .config import Settings
from .logging_config import setup_logging
from .persistence import JsonFileDocumentStore


def _json_out(data, code=0):
    print(json.dumps(data))
    sys.exit(code)


def _load_file(path: str) -> Document:
    """Read a saved threat model, exiting with a JSON error if unusable."""
    file_path = Path(path)
    if not file_path.exists():
        _json_out({"success": False, "error": f"File not found: {file_path}"}, 1)

    try:
        with open(file_path, "r") as f:
            data = json.load(f)
        return Document.model_validate(data)
    except json.JSONDecodeError as e:
        _json_out({"success": False, "error": f"Invalid JSON: {e}"}, 1)
    except ValidationError as e:
        _json_out({"success": False, "error": f"Not a threat model: {e.errors()[0]['msg']}"}, 1)


# ── Service ──────────────────────────────────────────────────────────────────

def cmd_serve(args):
    import uvicorn

    from .main import create_app

    settings = Settings.from_env()
    if args.host:
        settings.host = args.host
    if args.port:
        settings.port = args.port
    if args.data_dir:
        settings.data_dir = Path(args.data_dir)

    setup_logging(settings.log_level, settings.log_file)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


# ── Documents ────────────────────────────────────────────────────────────────

def cmd_list(args):
    settings = Settings.from_env()
    data_dir = Path(args.data_dir) if args.data_dir else settings.data_dir
    store = JsonFileDocumentStore(data_dir)
    documents = asyncio.run(store.list_documents(args.owner or settings.owner_id))
    _json_out({
        "success": True,
        "documents": [d.model_dump(mode="json", by_alias=True) for d in documents],
    })


# ── Analysis ─────────────────────────────────────────────────────────────────

def cmd_validate(args):
    document = _load_file(args.file_path)
    issues = validate_document(document)
    summary = validation_summary(issues)

    _json_out({
        "success": True,
        "issues": [issue.to_dict() for issue in issues],
        "summary": summary
    }, 0 if summary["valid"] else 1)


def cmd_summary(args):
    document = _load_file(args.file_path)
    summary = summarize_document(document, top_n=args.top)

    _json_out({
        "success": True,
        "summary": summary.to_dict(),
        "description": summary.describe(),
    })


# ── Main ─────────────────────────────────────────────────────────────────────

def main(argv=None):
    parser = argparse.ArgumentParser(description="Threat canvas diagram session engine")
    sub = parser.add_subparsers(dest="command", required=True)

    # Service
    p = sub.add_parser("serve", help="Run the HTTP/WebSocket API")
    p.add_argument("--host")
    p.add_argument("--port", type=int)
    p.add_argument("--data-dir")

    # Documents
    p = sub.add_parser("list", help="List saved threat models")
    p.add_argument("--data-dir")
    p.add_argument("--owner")

    # Analysis
    p = sub.add_parser("validate", help="Check a saved threat model for structural issues")
    p.add_argument("file_path")

    p = sub.add_parser("summary", help="Summarize a saved threat model")
    p.add_argument("file_path")
    p.add_argument("--top", type=int, default=5)

    args = parser.parse_args(argv)

    cmd_map = {
        "serve": cmd_serve,
        "list": cmd_list,
        "validate": cmd_validate,
        "summary": cmd_summary,
    }
    cmd_map[args.command](args)


if __name__ == "__main__":
    main()
