# tsvshuttle/utils.py
"""
Utility functions for tsvshuttle.
"""

import logging
from pathlib import Path
from typing import Iterable, List, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
_CHUNK_SIZE = 1024 * 1024


def _chunks(path: PathLike, chunk_size: int = _CHUNK_SIZE) -> Iterable[bytes]:
    with open(path, 'rb') as fp:
        while True:
            chunk = fp.read(chunk_size)
            if not chunk:
                break
            yield chunk


def count_lines(path: PathLike) -> int:
    """Count newline characters, the same number ``wc -l`` reports."""
    return sum(chunk.count(b'\n') for chunk in _chunks(path))


def count_empty_lines(path: PathLike) -> int:
    """Count lines with no content at all, like ``grep -c '^$'``."""
    with open(path, 'rb') as fp:
        return sum(1 for line in fp if line == b'\n')


def file_size(path: PathLike) -> int:
    return Path(path).stat().st_size


def read_text(path: PathLike, limit: int = 64 * 1024) -> str:
    """Read up to ``limit`` characters of a diagnostic file, empty string if it is missing."""
    try:
        with open(path, 'r', encoding='utf-8', errors='replace') as fp:
            return fp.read(limit)
    except FileNotFoundError:
        return ''


def remove_files(*paths: PathLike) -> List[Path]:
    """Remove files that exist, returning the ones removed."""
    removed = []
    for path in paths:
        path = Path(path)
        try:
            path.unlink()
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning(f"Failed to remove {path}: {e}")
            continue
        removed.append(path)
    return removed
