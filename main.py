import uvicorn

from receipt_ocr.main import app  # noqa: F401


if __name__ == "__main__":
    uvicorn.run("receipt_ocr.main:app", host="0.0.0.0", port=8000)
