import logging
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def safe_unlink(path: Optional[PathLike]) -> bool:
    """
    Remove a file, logging instead of raising.

    Returns:
        True if the file is gone afterwards (removed or never existed)
    """
    if not path:
        return True
    target = Path(path)
    try:
        target.unlink(missing_ok=True)
        return True
    except OSError as e:
        logger.warning(f"Could not remove {target}: {e}")
        return False


def file_size(path: Optional[PathLike]) -> int:
    """Size in bytes, 0 when the file is missing or unreadable."""
    if not path:
        return 0
    try:
        return Path(path).stat().st_size
    except OSError:
        return 0


def normalized(path: PathLike) -> str:
    """Absolute, symlink-resolved string form used for path comparison."""
    return str(Path(path).expanduser().resolve())
