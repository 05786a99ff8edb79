"""Converter strategies and the media-type registry."""

from .audio import AudioConverter
from .base import Converter, Invocation
from .image import ImageConverter
from .registry import ConverterRegistry
from .video import VideoConverter, create_zip

__all__ = [
    "AudioConverter",
    "Converter",
    "ConverterRegistry",
    "ImageConverter",
    "Invocation",
    "VideoConverter",
    "create_zip",
]
