from __future__ import annotations

from pathlib import Path
from typing import Iterable, Literal

Order = Literal["name", "ctime", "mtime"]

_SORT_KEYS = {
    "name": lambda p: p.name,
    "ctime": lambda p: (p.stat().st_ctime, p.name),
    "mtime": lambda p: (p.stat().st_mtime, p.name),
}


def list_sources(
    folder: Path | str,
    extensions: Iterable[str] | None = None,
    order: Order = "name",
) -> list[Path]:
    """Regular files directly inside ``folder``, filtered by extension and sorted."""
    root = Path(folder)
    if not root.is_dir():
        raise NotADirectoryError(f"folder not found: {root}")
    try:
        key = _SORT_KEYS[order]
    except KeyError:
        raise ValueError(f"unknown order {order!r}; expected one of {sorted(_SORT_KEYS)}") from None

    wanted = {e.lower() for e in extensions} if extensions is not None else None
    files = [
        p
        for p in root.iterdir()
        if p.is_file() and (wanted is None or p.suffix.lower() in wanted)
    ]
    return sorted(files, key=key)
