# receipts.py
import base64
import binascii
import io
import re
from typing import BinaryIO, Tuple

from PIL import Image, UnidentifiedImageError

from models import ReceiptError

MAX_SIDE_PX = 1600
JPEG_QUALITY = 82

_DATA_URL_RE = re.compile(r"^data:(?P<mime>image/[\w.+-]+);base64,(?P<data>.+)$", re.S)


def encode_receipt(stream: BinaryIO) -> str:
    """
    Turn an uploaded receipt photo into an embeddable data URL.

    The image is re-encoded as JPEG (RGB, longest side capped at
    MAX_SIDE_PX) so stored partitions stay a manageable size.
    """
    try:
        img = Image.open(stream)
        img.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        raise ReceiptError(f"Could not read receipt image: {e}")

    if img.mode != "RGB":
        img = img.convert("RGB")
    img.thumbnail((MAX_SIDE_PX, MAX_SIDE_PX))

    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=JPEG_QUALITY, optimize=True)
    return "data:image/jpeg;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


def decode_receipt(data_url: str) -> Tuple[str, bytes]:
    """Return (mimetype, raw bytes) for a stored receipt."""
    m = _DATA_URL_RE.match(data_url or "")
    if not m:
        raise ReceiptError("Receipt is not an image data URL.")
    try:
        raw = base64.b64decode(m.group("data"), validate=True)
    except (binascii.Error, ValueError):
        raise ReceiptError("Receipt data is not valid base64.")
    return m.group("mime"), raw


def validate_receipt(data_url: str) -> str:
    """Check a client-supplied data URL really holds an image; returns it unchanged."""
    _, raw = decode_receipt(data_url)
    try:
        with Image.open(io.BytesIO(raw)) as img:
            img.verify()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError) as e:
        raise ReceiptError(f"Receipt is not a valid image: {e}")
    return data_url
