# tsvshuttle/compression.py
"""
gzip compression of staged files.

``compress_file`` replaces ``x.tsv`` with ``x.tsv.gz`` and
``decompress_file`` does the reverse, the way ``gzip -f`` and ``gzip -d``
leave exactly one of the two files behind.
"""

import gzip
import logging
import shutil
import zlib
from pathlib import Path

from .results import ErrorKind, StepResult
from .utils import remove_files

logger = logging.getLogger(__name__)

BUFFER_SIZE = 1024 * 1024
SUFFIX = '.gz'


def compressed_name(path: Path) -> Path:
    return path.with_name(path.name + SUFFIX)


def decompressed_name(path: Path) -> Path:
    if path.suffix != SUFFIX:
        raise ValueError(f"{path} does not end in {SUFFIX}")
    return path.with_name(path.name[:-len(SUFFIX)])


def compress_file(path: Path, compresslevel: int = 6) -> StepResult:
    """Gzip ``path`` to ``path.gz`` and remove the original. The result value is the new path."""
    path = Path(path)
    target = compressed_name(path)
    try:
        with open(path, 'rb') as src, gzip.open(target, 'wb', compresslevel=compresslevel) as dst:
            shutil.copyfileobj(src, dst, BUFFER_SIZE)
        path.unlink()
    except FileNotFoundError as e:
        remove_files(target)
        return StepResult.failure(ErrorKind.NOT_FOUND, f"Failed to compress {path}", detail=str(e))
    except OSError as e:
        remove_files(target)
        return StepResult.failure(ErrorKind.TOOL, f"Failed to compress {path}", detail=str(e))
    return StepResult.success(target, message=f"Compressed {path.name} to {target.name}")


def decompress_file(path: Path) -> StepResult:
    """
    Gunzip ``path`` next to itself and remove the compressed file.

    When the uncompressed file is already there (left over from an earlier
    run) the compressed file is removed and the existing file is used as is.
    The result value is the uncompressed path.
    """
    path = Path(path)
    target = decompressed_name(path)

    if target.exists():
        logger.warning(f"Uncompressed file {target} already exists.")
        logger.info(f"Removing existing compressed file {path}")
        remove_files(path)
        return StepResult.success(target, message=f"Using existing {target.name}")

    try:
        with gzip.open(path, 'rb') as src, open(target, 'wb') as dst:
            shutil.copyfileobj(src, dst, BUFFER_SIZE)
        path.unlink()
    except FileNotFoundError as e:
        remove_files(target)
        return StepResult.failure(ErrorKind.NOT_FOUND, f"Error decompressing {path}", detail=str(e))
    except (OSError, EOFError, zlib.error) as e:
        # gzip.BadGzipFile is an OSError
        remove_files(target)
        return StepResult.failure(ErrorKind.TOOL, f"Error decompressing {path}", detail=str(e))
    return StepResult.success(target, message=f"Decompressed {path.name} to {target.name}")
