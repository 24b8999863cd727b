"""
Image codec utilities over Pillow.

Decoding (HEIC/HEIF via pillow-heif), bounded thumbnails, JPEG re-encoding
and text watermarks. The module-level functions are synchronous; the
``ImageCodec`` methods push them to a worker thread so the event loop is
never blocked by CPU-bound work.
"""
import io

import pillow_heif
from asgiref.sync import sync_to_async
from PIL import Image, ImageDraw, ImageFont, UnidentifiedImageError

from apps.core.errors import ValidationError


def open_image_convert_heic(data: bytes):
    """
    Decode image bytes, converting HEIC/HEIF to a Pillow image.
    Raises ValidationError when the bytes are not a decodable image.
    """
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
        return img
    except Image.DecompressionBombError as e:
        raise ValidationError('Image dimensions exceed the allowed pixel count') from e
    except (UnidentifiedImageError, OSError):
        pass

    try:
        heif_file = pillow_heif.read_heif(data)
        return Image.frombytes(
            heif_file.mode,
            heif_file.size,
            heif_file.data,
            "raw"
        )
    except Exception as e:
        raise ValidationError('File could not be decoded as an image') from e


def _rgb(img):
    if img.mode != 'RGB':
        img = img.convert('RGB')
    return img


def save_jpg_to_bytes(img, quality=90) -> bytes:
    buf = io.BytesIO()
    _rgb(img).save(buf, format='JPEG', quality=quality)
    return buf.getvalue()


def decode_dimensions(data: bytes):
    """Return (width, height) in pixels."""
    return open_image_convert_heic(data).size


def generate_thumbnail(data: bytes, box: int, quality: int = 85) -> bytes:
    """
    Fit inside a ``box`` x ``box`` square, preserving aspect ratio.
    Smaller images are never enlarged.
    """
    img = _rgb(open_image_convert_heic(data))
    img.thumbnail((box, box), Image.Resampling.LANCZOS)
    return save_jpg_to_bytes(img, quality=quality)


def compress(data: bytes, quality: int = 70) -> bytes:
    return save_jpg_to_bytes(open_image_convert_heic(data), quality=quality)


def add_watermark(data: bytes, text: str, quality: int = 90) -> bytes:
    """Burn ``text`` into the bottom-right corner on a translucent band."""
    base = open_image_convert_heic(data).convert('RGBA')
    overlay = Image.new('RGBA', base.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(overlay)
    font = ImageFont.load_default(size=max(12, base.width // 40))

    left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
    text_w, text_h = right - left, bottom - top
    margin = max(4, text_h // 2)
    x = max(0, base.width - text_w - 2 * margin)
    y = max(0, base.height - text_h - 2 * margin)

    draw.rectangle((x, y, base.width, base.height), fill=(0, 0, 0, 128))
    draw.text((x + margin - left, y + margin - top), text, font=font, fill=(255, 255, 255, 255))
    return save_jpg_to_bytes(Image.alpha_composite(base, overlay), quality=quality)


class ImageCodec:
    """Async facade used by ImageService."""

    async def dimensions(self, data: bytes):
        return await sync_to_async(decode_dimensions, thread_sensitive=False)(data)

    async def thumbnail(self, data: bytes, box: int, quality: int) -> bytes:
        return await sync_to_async(generate_thumbnail, thread_sensitive=False)(data, box, quality)

    async def compress(self, data: bytes, quality: int) -> bytes:
        return await sync_to_async(compress, thread_sensitive=False)(data, quality)

    async def watermark(self, data: bytes, text: str) -> bytes:
        return await sync_to_async(add_watermark, thread_sensitive=False)(data, text)
