import base64
import io

import pytest
from PIL import Image

from models import ReceiptError
from receipts import MAX_SIDE_PX, decode_receipt, encode_receipt, validate_receipt


def test_encode_produces_jpeg_data_url(png_bytes):
    url = encode_receipt(io.BytesIO(png_bytes))
    assert url.startswith("data:image/jpeg;base64,")
    mimetype, raw = decode_receipt(url)
    assert mimetype == "image/jpeg"
    assert raw[:2] == b"\xff\xd8"


def test_large_photos_are_downscaled(png_factory):
    url = encode_receipt(io.BytesIO(png_factory(size=(3200, 1000))))
    _, raw = decode_receipt(url)
    with Image.open(io.BytesIO(raw)) as img:
        assert max(img.size) == MAX_SIDE_PX


def test_transparent_images_are_flattened():
    buf = io.BytesIO()
    Image.new("RGBA", (10, 10), (0, 0, 0, 0)).save(buf, format="PNG")
    buf.seek(0)
    assert encode_receipt(buf).startswith("data:image/jpeg;base64,")


def test_non_images_are_rejected():
    with pytest.raises(ReceiptError):
        encode_receipt(io.BytesIO(b"%PDF-1.4 not a photo"))


def test_decode_rejects_bad_data_urls():
    with pytest.raises(ReceiptError):
        decode_receipt("hello")
    with pytest.raises(ReceiptError):
        decode_receipt("data:image/png;base64,@@@")


def test_validate_receipt(receipt_url):
    assert validate_receipt(receipt_url) == receipt_url
    with pytest.raises(ReceiptError):
        validate_receipt("data:image/png;base64,aGVsbG8=")


def test_decompression_bombs_are_rejected():
    buf = io.BytesIO()
    Image.new("1", (20000, 20000)).save(buf, format="PNG")
    with pytest.raises(ReceiptError):
        encode_receipt(io.BytesIO(buf.getvalue()))

    bomb_url = "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")
    with pytest.raises(ReceiptError):
        validate_receipt(bomb_url)
