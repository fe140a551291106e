"""Atomic JSON and text file helpers shared by the session store and run ledger.

Writes go to a temp file in the target directory and are moved into place
with ``os.replace``, so readers never observe a partially written file.
"""

import os
import tempfile
from pathlib import Path
from typing import Any

import orjson


def write_bytes_atomic(path: Path, content: bytes) -> None:
    """Write ``content`` to ``path`` atomically, creating parent dirs."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def write_text_atomic(path: Path, content: str) -> None:
    write_bytes_atomic(path, content.encode("utf-8"))


def write_json_atomic(path: Path, data: Any) -> None:
    """Serialize ``data`` with orjson (indented, trailing newline) and write atomically."""
    write_bytes_atomic(
        path,
        orjson.dumps(data, option=orjson.OPT_INDENT_2 | orjson.OPT_APPEND_NEWLINE),
    )


def read_json(path: Path) -> Any:
    """Read and parse a JSON file.

    Raises:
        FileNotFoundError: If the file does not exist.
        orjson.JSONDecodeError: If the content is not valid JSON.
    """
    return orjson.loads(path.read_bytes())
