"""
Image utilities for fswatcher
"""
import io
import logging
from pathlib import Path
from typing import Tuple, Union

from PIL import Image, ImageDraw, ImageFont

logger = logging.getLogger(__name__)


# Extension -> Pillow format name
IMAGE_FORMATS = {
    '.jpg': 'JPEG',
    '.jpeg': 'JPEG',
    '.png': 'PNG',
    '.gif': 'GIF',
    '.webp': 'WEBP',
    '.bmp': 'BMP',
}


def format_for_path(image_path: Union[str, Path], default: str = 'PNG') -> str:
    return IMAGE_FORMATS.get(Path(image_path).suffix.lower(), default)


def _to_rgb(img: Image.Image) -> Image.Image:
    """Flatten transparency onto white for formats without alpha"""
    if img.mode in ('RGBA', 'LA', 'P'):
        if img.mode == 'P':
            img = img.convert('RGBA')
        background = Image.new('RGB', img.size, (255, 255, 255))
        background.paste(img, mask=img.split()[-1] if img.mode in ('RGBA', 'LA') else None)
        return background
    if img.mode != 'RGB':
        return img.convert('RGB')
    return img


def encode_optimized(image_path: Union[str, Path],
                     jpeg_quality: int = 80,
                     png_compression: int = 9,
                     webp_quality: int = 80) -> bytes:
    """
    Re-encode an image with the configured compression settings

    Args:
        image_path: Image to read
        jpeg_quality: JPEG quality (1-100)
        png_compression: zlib level for PNG (0-9)
        webp_quality: WebP quality (1-100)

    Returns:
        Encoded bytes in the file's own format

    Raises:
        PIL.UnidentifiedImageError: file is not a readable image
        OSError: file could not be read
    """
    image_format = format_for_path(image_path)
    buffer = io.BytesIO()

    with Image.open(image_path) as img:
        img.load()
        if image_format == 'JPEG':
            _to_rgb(img).save(buffer, format='JPEG', quality=jpeg_quality, optimize=True)
        elif image_format == 'PNG':
            img.save(buffer, format='PNG', compress_level=png_compression)
        elif image_format == 'WEBP':
            img.save(buffer, format='WEBP', quality=webp_quality)
        elif image_format == 'GIF':
            animated = getattr(img, 'n_frames', 1) > 1
            img.save(buffer, format='GIF', save_all=animated, optimize=True)
        else:
            img.save(buffer, format=image_format)

    return buffer.getvalue()


def is_valid_image(data: bytes) -> bool:
    """Check that data decodes as an image"""
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.verify()
        return True
    except Exception:
        return False


def create_placeholder_image(output_path: Union[str, Path],
                             text: str = "File was deleted\nReplacement image unavailable",
                             size: Tuple[int, int] = (600, 400),
                             background: Tuple[int, int, int] = (240, 240, 240),
                             foreground: Tuple[int, int, int] = (50, 50, 50)) -> bytes:
    """
    Render a light grey image with centred text

    Args:
        output_path: Only used to pick the image format
        text: Lines separated by newlines
        size: (width, height)

    Returns:
        Encoded image bytes (PNG when the extension is unknown)
    """
    image_format = format_for_path(output_path)
    width, height = size

    img = Image.new('RGB', size, background)
    draw = ImageDraw.Draw(img)
    font = ImageFont.load_default()

    lines = text.split('\n')
    line_height = 20
    start_y = (height - len(lines) * line_height) // 2
    for i, line in enumerate(lines):
        left, _, right, _ = draw.textbbox((0, 0), line, font=font)
        start_x = (width - (right - left)) // 2
        draw.text((start_x, start_y + i * line_height), line, fill=foreground, font=font)

    buffer = io.BytesIO()
    if image_format == 'JPEG':
        img.save(buffer, format='JPEG', quality=85)
    elif image_format == 'WEBP':
        img.save(buffer, format='WEBP', quality=80)
    elif image_format == 'PNG':
        img.save(buffer, format='PNG', compress_level=9)
    else:
        img.save(buffer, format=image_format)
    return buffer.getvalue()
