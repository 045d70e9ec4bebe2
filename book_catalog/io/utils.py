from __future__ import annotations

import json
import os
import tempfile
from typing import Any


def atomic_write_json(obj: Any, out_path: str, *, indent: int = 2) -> None:
    """Serialize `obj` beside `out_path`, then swap it in so readers never see a partial file."""
    d = os.path.dirname(out_path) or "."
    os.makedirs(d, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix=".catalog-", suffix=".json", dir=d)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(obj, f, ensure_ascii=False, indent=indent, sort_keys=True)
            f.write("\n")
        os.replace(tmp_path, out_path)
    finally:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
