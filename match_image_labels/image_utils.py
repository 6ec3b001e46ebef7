import io
import logging
from pathlib import Path

from PIL import Image

logger = logging.getLogger(__name__)

# Image resize parameters
MAX_LONG_SIDE = 2048
MAX_SHORT_SIDE = 768

IMAGE_EXTS = {".jpg", ".jpeg", ".png", ".gif", ".bmp", ".webp", ".tiff", ".tif"}


def is_image_file(path: Path) -> bool:
    """Check if a file is an image file based on its extension."""
    return path.suffix.lower() in IMAGE_EXTS


def convert_to_supported_format(img: Image.Image, supported_mime_types: set[str]) -> bytes:
    """Convert image to a supported format for the model."""
    buffer = io.BytesIO()

    # Try formats in order of preference
    for format_name in ["JPEG", "PNG", "WEBP"]:
        mime_type = f"image/{format_name.lower()}"
        if mime_type in supported_mime_types:
            if format_name == "JPEG":
                # Convert to RGB for JPEG (removes alpha channel if present)
                if img.mode not in ("RGB", "L"):
                    img = img.convert("RGB")
            img.save(buffer, format=format_name)
            return buffer.getvalue()

    logger.debug("supported_mime_types: %s", supported_mime_types)
    raise ValueError("No supported image format found")


def resize_image(img: Image.Image, max_long_side: int, max_short_side: int) -> Image.Image:
    """Resize image to fit within specified dimensions while maintaining aspect ratio.

    Args:
        img: PIL Image to resize
        max_long_side: Maximum length for the longest side
        max_short_side: Maximum length for the shortest side

    Returns:
        Resized PIL Image
    """
    width, height = img.size
    long_side, short_side = (width, height) if width >= height else (height, width)
    scale = min(max_long_side / long_side, max_short_side / short_side)
    if scale < 1:
        return img.resize((max(1, int(width * scale)), max(1, int(height * scale))), Image.Resampling.LANCZOS)
    return img


def load_image_content(image_path: Path, supported_mime_types: set[str]) -> bytes:
    """Read an image and re-encode it, downsized, in a format the model accepts.

    Raises OSError if the file can't be read or isn't an image Pillow recognizes.
    """
    logger.debug("Loading %s", image_path)
    with Image.open(image_path) as img:
        img.load()
        resized = resize_image(img, MAX_LONG_SIDE, MAX_SHORT_SIDE)
        return convert_to_supported_format(resized, supported_mime_types)
