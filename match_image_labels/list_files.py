import logging
from pathlib import Path

from .image_utils import is_image_file
from .types import ConfigError

logger = logging.getLogger(__name__)


def list_image_files(directory: Path) -> list[Path]:
    """List the regular files directly inside ``directory``, sorted by name.

    Subdirectories and hidden files are skipped. Files without an image
    extension are still listed; the matcher reports them as unreadable.

    Raises:
        ConfigError: if ``directory`` doesn't exist or isn't a directory.
    """
    if not directory.is_dir():
        raise ConfigError(f"Images directory {directory} not found")

    files = []
    for path in sorted(directory.iterdir()):
        if path.name.startswith(".") or not path.is_file():
            continue
        if not is_image_file(path):
            logger.warning("Not an image file extension: %s", path.name)
        files.append(path)
    return files
