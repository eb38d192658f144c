import json
import os
from pathlib import Path
from typing import Any, Union


def write_atomic(path: Union[str, Path], data: Union[bytes, str]) -> int:
    """
    Write data to '<path>.tmp' then rename it over 'path'.
    A reader (or a crash) never observes a partially written final file.
    Returns the number of bytes written.
    """
    dest = Path(path)
    dest.parent.mkdir(parents=True, exist_ok=True)
    payload = data.encode("utf-8") if isinstance(data, str) else data
    tmp = dest.with_name(dest.name + ".tmp")
    try:
        with open(tmp, "wb") as f:
            f.write(payload)
        os.replace(tmp, dest)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise
    return len(payload)


def write_report(path: Union[str, Path], rows: Any) -> None:
    """Write a machine-readable run report (pretty JSON)."""
    write_atomic(path, json.dumps(rows, indent=2, ensure_ascii=False) + "\n")
