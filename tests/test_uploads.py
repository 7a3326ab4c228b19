"""
Tests for single-shot image uploads.
"""
import os
import sqlite3
from unittest.mock import MagicMock

import pytest

from gateway.errors import InternalError, PayloadTooLarge, UnsupportedMediaType, ValidationFailed
from uploads.images import (
    ImageRecords,
    ImageUploader,
    content_hash,
    ensure_within_limit,
    extension_for,
    format_megabytes,
    safe_stem,
)

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


@pytest.fixture
def records(database, clock):
    return ImageRecords(database, clock=clock)


@pytest.fixture
def uploader(blob_store, records):
    return ImageUploader(blob_store, records)


def test_upload_stores_blob_and_echoes_ref(uploader, blob_store):
    image = uploader.upload(PNG_BYTES, "image/png", ref="cover", filename="My Cover.png")

    name = f"ghost-upload_My-Cover_{content_hash(PNG_BYTES)}.png"
    assert image.url == f"https://cdn.example.com/content/images/{name}"
    assert image.ref == "cover"
    with open(os.path.join(blob_store.directory, name), "rb") as f:
        assert f.read() == PNG_BYTES


def test_ref_falls_back_to_filename(uploader):
    assert uploader.upload(PNG_BYTES, "image/png", filename="cat.png").ref == "cat.png"


def test_identical_upload_is_deduplicated(uploader, blob_store, database):
    """Same bytes under another name reuse the first blob instead of writing a new one."""
    first = uploader.upload(PNG_BYTES, "image/png", filename="one.png")
    second = uploader.upload(PNG_BYTES, "image/png", filename="two.png")

    assert second.url == first.url
    blobs = [name for name in os.listdir(blob_store.directory) if not name.startswith(".")]
    assert len(blobs) == 1
    with database.connect() as conn:
        assert conn.execute("SELECT COUNT(*) FROM stored_images").fetchone()[0] == 1


def test_existing_blob_without_record_is_reused(uploader, blob_store, database):
    name = f"ghost-upload_cat_{content_hash(PNG_BYTES)}.png"
    blob_store.put(name, PNG_BYTES, "image/png")

    image = uploader.upload(PNG_BYTES, "image/png", filename="cat.png")

    assert image.url == blob_store.url_for(name)


def test_upload_over_limit_reports_measured_size(uploader):
    """A 5 MB file against the 4.5 MB ceiling is rejected with both sizes in the message."""
    data = b"\x00" * (5 * 1024 * 1024)

    with pytest.raises(PayloadTooLarge) as exc_info:
        uploader.upload(data, "image/jpeg", filename="big.jpg")

    assert exc_info.value.status_code == 413
    assert exc_info.value.message == (
        "File size 5.00MB exceeds the maximum upload size of 4.5MB"
    )


def test_upload_at_limit_is_accepted(blob_store, records):
    uploader = ImageUploader(blob_store, records, max_upload_bytes=1024)
    assert uploader.upload(b"\x01" * 1024, "image/gif", filename="a.gif").url.endswith(".gif")


@pytest.mark.parametrize("content_type", ["application/pdf", "text/html", "", "image/tiff"])
def test_unsupported_types_rejected(uploader, content_type):
    with pytest.raises(UnsupportedMediaType):
        uploader.upload(PNG_BYTES, content_type, filename="file.bin")


def test_icon_types_only_for_icon_purpose(uploader):
    with pytest.raises(UnsupportedMediaType):
        uploader.upload(PNG_BYTES, "image/x-icon", filename="favicon.ico")

    image = uploader.upload(PNG_BYTES, "image/x-icon", purpose="icon", filename="favicon.ico")
    assert image.url.endswith(".ico")


def test_unknown_purpose_rejected(uploader):
    with pytest.raises(ValidationFailed):
        uploader.upload(PNG_BYTES, "image/png", purpose="banner")


def test_empty_file_rejected(uploader):
    with pytest.raises(ValidationFailed) as exc_info:
        uploader.upload(b"", "image/png", filename="empty.png")
    assert exc_info.value.message == "Please select a file to upload."


def test_storage_failure_is_internal_error(records):
    blob_store = MagicMock()
    blob_store.head.return_value = None
    blob_store.put.side_effect = OSError("disk full")

    with pytest.raises(InternalError) as exc_info:
        ImageUploader(blob_store, records).upload(PNG_BYTES, "image/png", filename="a.png")
    assert exc_info.value.message == "Failed to upload image"


def test_record_failure_is_internal_error(blob_store):
    records = MagicMock()
    records.find.side_effect = sqlite3.OperationalError("no such table")

    with pytest.raises(InternalError):
        ImageUploader(blob_store, records).upload(PNG_BYTES, "image/png")


def test_extension_for_ignores_parameters_and_case():
    assert extension_for("IMAGE/JPEG; charset=binary") == "jpg"
    assert extension_for("image/svg+xml") == "svg"
    assert extension_for("image/vnd.microsoft.icon", purpose="icon") == "ico"


def test_safe_stem():
    assert safe_stem("../../etc/passwd") == "passwd"
    assert safe_stem("holiday photo (1).jpeg") == "holiday-photo-1"
    assert safe_stem(None) == "image"
    assert safe_stem("...") == "image"


def test_format_megabytes_and_limit():
    assert format_megabytes(5 * 1024 * 1024) == "5.00MB"
    assert format_megabytes(int(4.5 * 1024 * 1024), 1) == "4.5MB"
    ensure_within_limit(10, 10)
    with pytest.raises(PayloadTooLarge):
        ensure_within_limit(11, 10)


def test_blob_store_refuses_unsafe_names(blob_store):
    with pytest.raises(ValueError):
        blob_store.put("../escape.png", PNG_BYTES, "image/png")
    assert blob_store.path_for("../escape.png") is None
    assert blob_store.head("missing.png") is None
