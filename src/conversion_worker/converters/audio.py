"""Audio conversion."""

from .base import Converter, simple


class AudioConverter(Converter):
    """Transcodes audio, dropping any video stream (cover art)."""

    kind = "audio"
    INVOCATIONS = {
        "mp3": simple("-vn", "-acodec", "libmp3lame"),
        "wav": simple(),
        "flac": simple("-vn", "-acodec", "flac"),
        "ogg": simple("-vn", "-acodec", "libvorbis"),
        "wma": simple("-vn", "-acodec", "wmav2"),
        "aac": simple("-vn", "-acodec", "aac"),
    }
