"""
Filesystem helpers: directory bootstrap, CSV output and source discovery.
"""
from collections.abc import Callable, Iterable, Mapping, Sequence
from pathlib import Path
from typing import Any

from iyield_ingest.codec import serialize


def ensure_dir(path: str | Path) -> Path:
    """Create ``path`` (and parents) if needed and return it."""
    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def write_csv(
    directory: str | Path,
    filename: str,
    records: Sequence[Mapping[str, Any]],
    headers: Sequence[str],
) -> Path:
    """Serialize ``records`` under ``headers`` into ``directory/filename``."""
    target = ensure_dir(directory) / filename
    target.write_text(serialize(records, headers), encoding="utf-8")
    return target


def walk_files(roots: Iterable[str | Path]) -> list[Path]:
    """
    Recursively list every regular file under the given roots.

    Roots that do not exist are ignored; a root that is itself a file is
    returned as-is. Paths are absolute and in traversal order.
    """
    found: list[Path] = []
    stack = [Path(root).resolve() for root in reversed(list(roots))]
    while stack:
        current = stack.pop()
        if current.is_dir():
            children = sorted(current.iterdir(), reverse=True)
            stack.extend(children)
        elif current.is_file():
            found.append(current)
    return found


def is_tabular_file(path: Path) -> bool:
    return path.suffix.lower() == ".csv"


def discover_tabular_files(
    roots: Iterable[str | Path],
    predicate: Callable[[Path], bool] = is_tabular_file,
) -> list[Path]:
    """All files under ``roots`` accepted by ``predicate``, sorted lexically."""
    return sorted(
        (path for path in walk_files(roots) if predicate(path)),
        key=lambda path: str(path),
    )
