"""Tests for image_codec.py - transport encoding, upload validation and previews."""

import base64

import pytest

from errors import ValidationError
from image_codec import (
    JPEG,
    PNG,
    UPLOAD_ERROR,
    ImageResource,
    PreviewStore,
    decode_image_input,
    decode_upload,
    download_filename,
    load_image,
    sniff_media_type,
    to_image_input,
    to_png_bytes,
    validate_upload,
)


class TestTransportEncoding:
    """Tests for to_image_input() and decode_image_input()."""

    def test_encodes_base64(self, png_bytes):
        """Test that the payload is plain base64 text."""
        image = to_image_input(ImageResource(data=png_bytes, media_type=PNG))

        assert image.media_type == PNG
        assert not image.data.startswith("data:")
        assert base64.b64decode(image.data) == png_bytes

    def test_decode(self, jpeg_bytes):
        image = to_image_input(ImageResource(data=jpeg_bytes, media_type=JPEG))
        assert decode_image_input(image) == jpeg_bytes


class TestUploadValidation:
    """Tests for validate_upload() and decode_upload()."""

    def test_sniff(self, png_bytes, jpeg_bytes):
        assert sniff_media_type(png_bytes) == PNG
        assert sniff_media_type(jpeg_bytes) == JPEG
        assert sniff_media_type(b"not an image") is None

    def test_accepts_png(self, png_bytes):
        resource = validate_upload(png_bytes, "image/png")
        assert resource.media_type == PNG
        assert resource.data == png_bytes

    def test_jpg_alias(self, jpeg_bytes):
        """Test that image/jpg is treated as image/jpeg."""
        assert validate_upload(jpeg_bytes, "image/jpg").media_type == JPEG

    def test_content_type_wins(self, jpeg_bytes):
        """Test that a mislabelled upload gets its real media type."""
        assert validate_upload(jpeg_bytes, "image/png").media_type == JPEG

    def test_rejects_unsupported_type(self, png_bytes):
        with pytest.raises(ValidationError, match="JPG or PNG"):
            validate_upload(png_bytes, "image/gif")

    def test_rejects_garbage(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_upload(b"plain text", "image/png")
        assert str(exc_info.value) == UPLOAD_ERROR

    def test_decode_base64(self, png_bytes):
        payload = base64.b64encode(png_bytes).decode()
        assert decode_upload(payload, "image/png").data == png_bytes

    def test_decode_data_url(self, jpeg_bytes):
        """Test that a data: URL supplies the declared type."""
        payload = "data:image/jpeg;base64," + base64.b64encode(jpeg_bytes).decode()
        resource = decode_upload(payload, None)
        assert resource.media_type == JPEG

    def test_decode_invalid_base64(self):
        with pytest.raises(ValidationError):
            decode_upload("***not base64***", "image/png")

    def test_load_image(self, temp_dir, png_bytes):
        path = temp_dir / "model.png"
        path.write_bytes(png_bytes)
        assert load_image(path).media_type == PNG

    def test_load_image_wrong_extension(self, temp_dir, png_bytes):
        path = temp_dir / "model.txt"
        path.write_bytes(png_bytes)
        with pytest.raises(ValidationError):
            load_image(path)


class TestDownload:
    """Tests for download helpers."""

    def test_png_passthrough(self, png_bytes):
        assert to_png_bytes(png_bytes) is png_bytes

    def test_jpeg_converted(self, jpeg_bytes):
        assert sniff_media_type(to_png_bytes(jpeg_bytes)) == PNG

    def test_undecodable(self):
        with pytest.raises(ValidationError):
            to_png_bytes(b"nope")

    def test_filename_is_one_based(self):
        assert download_filename(0) == "ai-fashion-try-on-1.png"
        assert download_filename(2, upscaled=True) == "ai-fashion-try-on-3-upscaled.png"


class TestPreviewStore:
    """Tests for preview handle lifetime."""

    def test_create_and_get(self, model_a):
        store = PreviewStore()
        handle = store.create(model_a)

        assert handle in store
        assert store.get(handle) is model_a

    def test_handles_are_distinct(self, model_a):
        store = PreviewStore()
        assert store.create(model_a) != store.create(model_a)
        assert len(store) == 2

    def test_revoke(self, model_a):
        """Test that a revoked handle no longer resolves."""
        store = PreviewStore()
        handle = store.create(model_a)
        store.revoke(handle)

        assert handle not in store
        assert store.get(handle) is None
        store.revoke(handle)
        store.revoke(None)

    def test_revoke_all(self, model_a, model_b):
        store = PreviewStore()
        store.create(model_a)
        store.create(model_b)

        assert store.revoke_all() == 2
        assert len(store) == 0
