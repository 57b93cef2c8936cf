import base64
import binascii
import io

from PIL import Image, ImageOps

CROP_SIZE = 512
CROP_JPEG_QUALITY = 80


def split_data_url(image: str) -> tuple[str, str]:
    """Return (mime_type, base64_payload) for a data URL or raw base64 string."""
    if image.startswith("data:") and "," in image:
        header, payload = image.split(",", 1)
        mime_type = header[len("data:"):].split(";", 1)[0] or "image/jpeg"
        return mime_type, payload
    return "image/jpeg", image


def decode_image_data(image: str) -> bytes:
    _, payload = split_data_url(image)
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Image is not valid base64: {e}") from e


def to_data_url(data: bytes, mime_type: str = "image/png") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('utf-8')}"


def load_image(image: str) -> Image.Image:
    """Decode a data URL into a PIL image, raising ValueError if it is not one."""
    raw = decode_image_data(image)
    try:
        img = Image.open(io.BytesIO(raw))
        img.load()
    except (OSError, Image.DecompressionBombError) as e:
        raise ValueError(f"Could not read image: {e}") from e
    # camera JPEGs often carry a rotation tag
    return ImageOps.exif_transpose(img).convert("RGB")


def center_square_crop(image: str, size: int = CROP_SIZE, quality: int = CROP_JPEG_QUALITY) -> str:
    """Take the central square of the photo, scale it to size x size and
    return it as a JPEG data URL."""
    img = load_image(image)
    width, height = img.size
    side = min(width, height)
    left = (width - side) // 2
    top = (height - side) // 2
    square = img.crop((left, top, left + side, top + side))
    square = square.resize((size, size), Image.LANCZOS)

    buf = io.BytesIO()
    square.save(buf, format="JPEG", quality=quality)
    return to_data_url(buf.getvalue(), "image/jpeg")
