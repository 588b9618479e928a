"""Small file helpers shared by the snapshot and config writers."""

import json
import os
import tempfile
from typing import Any


def atomic_write_json(path: str, data: Any, indent: int = 2) -> None:
    """Write *data* as JSON to *path* atomically.

    The payload goes to a temp file in the same directory first and is then
    moved over the target with ``os.replace`` so readers never observe a
    half-written file.
    """
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-", suffix=".json")
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=indent)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise
