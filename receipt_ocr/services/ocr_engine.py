# receipt_ocr/services/ocr_engine.py
"""
Text extraction for uploaded receipts.

Runs inside a worker process, so everything here is a plain module-level
function that can be pickled by the execution pool.

Images go straight to Tesseract. PDFs are read with PyMuPDF: pages that carry
a text layer are used as-is, scanned pages are rasterized and OCRed.
"""

import io
from typing import Any, Dict, List

import fitz  # PyMuPDF
import pytesseract
from PIL import Image

from receipt_ocr.core.exceptions import OcrEngineError


PDF_SIGNATURE = b"%PDF"


def detect_kind(file_path: str) -> str:
    """
    Return "pdf" for files starting with the PDF signature, otherwise "image".
    The file name is ignored; Pillow decides later whether the bytes are an image.
    """
    with open(file_path, "rb") as f:
        head = f.read(len(PDF_SIGNATURE))
    return "pdf" if head == PDF_SIGNATURE else "image"


def ocr_image(image: Image.Image, language: str) -> str:
    # tesseract can't handle palette or alpha modes reliably
    if image.mode not in ("L", "RGB"):
        image = image.convert("RGB")
    return pytesseract.image_to_string(image, lang=language)


def extract_text_from_image(file_path: str, language: str) -> str:
    with Image.open(file_path) as image:
        frames: List[str] = []
        # multi-page TIFF / animated GIF
        for index in range(getattr(image, "n_frames", 1)):
            image.seek(index)
            frames.append(ocr_image(image.copy(), language).strip())
    return "\n\n".join(t for t in frames if t)


def extract_text_from_pdf(file_path: str, language: str, dpi: int) -> str:
    pages: List[str] = []
    with fitz.open(file_path) as doc:
        for i in range(len(doc)):
            page = doc.load_page(i)
            txt = (page.get_text("text") or "").strip()
            if not txt:
                pix = page.get_pixmap(dpi=dpi)
                with Image.open(io.BytesIO(pix.tobytes("png"))) as image:
                    txt = ocr_image(image, language).strip()
            if txt:
                pages.append(txt)
    return "\n\n".join(pages)


def recognize(
    file_path: str, language: str = "eng", pdf_dpi: int = 200
) -> Dict[str, Any]:
    """
    Extract text from ``file_path``.

    Returns ``{"text": str}``. Any failure is raised and left to the caller
    to classify.
    """
    kind = detect_kind(file_path)
    try:
        if kind == "pdf":
            text = extract_text_from_pdf(file_path, language, pdf_dpi)
        else:
            text = extract_text_from_image(file_path, language)
    except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError) as e:
        raise OcrEngineError(str(e) or "tesseract failed", {"path": file_path}) from e
    except (fitz.FileDataError, Image.UnidentifiedImageError) as e:
        raise OcrEngineError(
            f"unsupported format: {e}", {"path": file_path}
        ) from e
    return {"text": text}

