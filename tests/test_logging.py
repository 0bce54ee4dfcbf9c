import os

from receipt_ocr.core.logging import SERVICE_NAME, add_service_context


def test_service_context_is_added_to_every_event():
    processor = add_service_context(SERVICE_NAME)

    event = processor(None, "info", {"event": "OCR job done", "job_id": "3"})

    assert event == {
        "event": "OCR job done",
        "job_id": "3",
        "service": "receipt-ocr",
        "pid": os.getpid(),
    }


def test_service_context_keeps_explicit_values():
    processor = add_service_context("receipt-ocr")

    event = processor(None, "info", {"event": "x", "service": "worker"})

    assert event["service"] == "worker"
