import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")


def resolve_path(path: str) -> Path:
    """Uploaded paths are stored as '/images/<file>' relative to UPLOAD_DIR."""
    return Path(UPLOAD_DIR) / path.lstrip("/")


def delete_file(path: str) -> bool:
    """Remove a stored upload. Never raises: a missing or locked file is only logged."""
    if not path:
        return False
    target = resolve_path(path)
    try:
        target.unlink()
    except FileNotFoundError:
        logger.warning("File already gone: %s", target)
        return False
    except OSError as e:
        logger.warning("Could not delete %s: %s", target, e)
        return False
    logger.info("Deleted file %s", target)
    return True


def delete_files(paths) -> None:
    for path in paths or []:
        delete_file(path)
