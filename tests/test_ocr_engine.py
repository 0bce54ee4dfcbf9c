import fitz
import pytest
import pytesseract
from PIL import Image

from receipt_ocr.core.exceptions import OcrEngineError
from receipt_ocr.services.ocr_engine import detect_kind, recognize


@pytest.fixture
def text_pdf(tmp_path):
    path = tmp_path / "receipt.pdf"
    doc = fitz.open()
    page = doc.new_page()
    page.insert_text((72, 72), "Invoice #1")
    page = doc.new_page()
    page.insert_text((72, 72), "Total 12.50")
    doc.save(str(path))
    doc.close()
    return path


def test_detect_kind_prefers_signature_over_suffix(tmp_path, text_pdf):
    renamed = tmp_path / "upload.png"
    renamed.write_bytes(text_pdf.read_bytes())

    assert detect_kind(str(renamed)) == "pdf"


def test_detect_kind_ignores_suffix(tmp_path):
    other = tmp_path / "notes.docx"
    other.write_bytes(b"PK\x03\x04")

    assert detect_kind(str(other)) == "image"
    with pytest.raises(OcrEngineError, match="unsupported format"):
        recognize(str(other))


def test_jpeg_with_uncommon_suffix_is_read(tmp_path, monkeypatch):
    photo = tmp_path / "receipt.jfif"
    Image.new("RGB", (40, 20), "white").save(photo, format="JPEG")
    seen = []

    def fake_image_to_string(image, lang):
        seen.append((image.size, lang))
        return "Coffee 3.20\n"

    monkeypatch.setattr(pytesseract, "image_to_string", fake_image_to_string)

    assert detect_kind(str(photo)) == "image"
    assert recognize(str(photo)) == {"text": "Coffee 3.20"}
    assert seen == [((40, 20), "eng")]


def test_pdf_text_layer_is_used_without_ocr(text_pdf):
    text = recognize(str(text_pdf))["text"]

    assert "Invoice #1" in text
    assert "Total 12.50" in text
    assert text.index("Invoice #1") < text.index("Total 12.50")


def test_unreadable_image_is_reported(tmp_path):
    bogus = tmp_path / "broken.png"
    bogus.write_bytes(b"definitely not an image")

    with pytest.raises(OcrEngineError, match="unsupported format"):
        recognize(str(bogus))


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        recognize(str(tmp_path / "gone.png"))
