"""Small filesystem helpers shared by the conversion pipeline."""

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from uuid import uuid4

from loguru import logger

from constants import FIRST_BLOCK_SIZE, NATIVE_EXTENSION


def get_extension(path: Path | str) -> str:
    """
    Return the lower-case extension of a path without the leading dot.

    :param path: The file path.
    :returns: The extension, e.g. ``"nrrd"``; an empty string when there is none.
    """
    return Path(path).suffix.lower().lstrip(".")


def is_native(path: Path | str) -> bool:
    return get_extension(path) == NATIVE_EXTENSION


def read_first_block(path: Path, size: int = FIRST_BLOCK_SIZE) -> bytes:
    """
    Read the leading bytes of a file for format sniffing.

    Files shorter than ``size`` are zero-padded so every converter sees a block
    of the same length.
    """
    with open(path, "rb") as file:
        block = file.read(size)
    return block.ljust(size, b"\x00")


def unique_temp_path(temp_dir: Path, stem: str, suffix: str = ".raw") -> Path:
    """
    Build a file name inside ``temp_dir`` that no other call will produce.

    :param temp_dir: The caller-owned, existing temporary directory.
    :param stem: A readable prefix, usually derived from the source file.
    :param suffix: The suffix of the intermediate file.
    :returns: A path that does not exist yet.
    """
    return Path(temp_dir) / f"{stem}-{uuid4().hex[:12]}{suffix}"


def remove_file(path: Path | None) -> None:
    """Delete an intermediate file. Failing to do so is only worth a warning."""
    if path is None:
        return
    try:
        Path(path).unlink(missing_ok=True)
    except OSError as error:
        logger.warning(f"Unable to remove temp file {path}: {error}")


@contextmanager
def removed_on_failure(path: Path) -> Iterator[Path]:
    """Remove ``path`` when the block raises, unless it existed beforehand."""
    existed = Path(path).exists()
    try:
        yield Path(path)
    except Exception:
        if not existed:
            remove_file(path)
        raise
