"""Media-type dispatch table."""

import logging
from typing import Dict, List, Optional

from ..errors import UnsupportedMediaTypeError
from ..ffmpeg_runner import FfmpegRunner
from .audio import AudioConverter
from .base import Converter
from .image import ImageConverter
from .video import VideoConverter


class ConverterRegistry:
    """Maps the primary kind of a media type to its converter.

    The table is fixed to image, audio and video. Resolution looks only at
    the part before the slash, so ``video/quicktime`` and ``video/mp4``
    share a converter.
    """

    def __init__(self, runner: Optional[FfmpegRunner] = None, logger: Optional[logging.Logger] = None):
        runner = runner or FfmpegRunner(logger=logger)
        self._converters: Dict[str, Converter] = {
            "image": ImageConverter(runner, logger),
            "audio": AudioConverter(runner, logger),
            "video": VideoConverter(runner, logger),
        }

    @staticmethod
    def kind_of(media_type: str) -> str:
        return (media_type or "").split("/", 1)[0].strip().lower()

    def resolve(self, media_type: str) -> Converter:
        """Return the converter for ``media_type``.

        Raises:
            UnsupportedMediaTypeError: kind not in the table
        """
        converter = self._converters.get(self.kind_of(media_type))
        if converter is None:
            raise UnsupportedMediaTypeError(media_type)
        return converter

    def supported_types(self) -> List[str]:
        return sorted(self._converters)

    def describe(self) -> Dict[str, List[str]]:
        """Every kind with its sorted format tokens."""
        return {
            kind: sorted(converter.supported_formats())
            for kind, converter in sorted(self._converters.items())
        }
