"""
Utility functions for the item publisher.

Includes id/time helpers and NDJSON reading for the CLI.
"""

import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Union


def generate_id() -> str:
    """Generate a UUID string for message entry identification."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def new_trace_id() -> str:
    return uuid.uuid4().hex


def iter_ndjson(path: Union[str, Path]) -> Iterator[Dict[str, Any]]:
    """Yield one dict per non-blank line of an NDJSON file."""
    with open(path, "r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError as e:
                raise ValueError(f"{path}:{lineno}: invalid JSON ({e.msg})") from e
