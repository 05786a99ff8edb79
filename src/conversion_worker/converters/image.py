"""Still image conversion."""

from .base import Converter, simple


class ImageConverter(Converter):
    """Re-encodes a still image; ffmpeg picks the codec from the extension."""

    kind = "image"
    INVOCATIONS = {
        "png": simple(),
        "jpeg": simple(),
        "jpg": simple(),
        "webp": simple(),
        "gif": simple(),
        "bmp": simple(),
    }
