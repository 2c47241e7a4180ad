"""I/O helpers for reading and writing structured data."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any



def save_json(path: Path, data: Any, *, indent: int = 2) -> None:
    """Atomically write ``data`` to ``path`` as UTF-8 JSON.

    The payload goes to a temporary sibling first and is moved into place
    with :func:`os.replace`, so readers never observe a half-written file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as stream:
            json.dump(data, stream, indent=indent, ensure_ascii=False)
            stream.write("\n")
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def load_json(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as stream:
        return json.load(stream)
