import logging
from pathlib import Path

from PIL import Image, ImageOps

from .. import config
from ..exceptions import SourceMissingError, TransientIOError


def resize_image(src: Path,
                 dest: Path,
                 max_width: int = config.MAX_WIDTH,
                 quality: int = config.JPEG_QUALITY) -> Path:
    """
    Resizes src to at most max_width pixels wide (aspect ratio kept, never
    upscaled) and writes it to dest as a JPEG. A partial dest is removed
    on failure.
    """
    try:
        with Image.open(src) as im:
            # Camera photos are often stored sideways with an orientation tag
            im = ImageOps.exif_transpose(im)
            if im.mode != "RGB":
                im = im.convert("RGB")

            if im.width > max_width:
                height = max(1, round(im.height * max_width / im.width))
                im = im.resize((max_width, height), Image.Resampling.LANCZOS)

            im.save(dest, "JPEG", quality=quality, optimize=True)
    except FileNotFoundError as e:
        dest.unlink(missing_ok=True)
        raise SourceMissingError(f"{src} no longer exists") from e
    except (OSError, ValueError) as e:
        # PIL.UnidentifiedImageError is an OSError
        dest.unlink(missing_ok=True)
        raise TransientIOError(f"Failed to resize {src}: {e}") from e

    logging.debug(f"Resized {src.name} -> {dest.name}")
    return dest
