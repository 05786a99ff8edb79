"""Converter strategy base class and invocation descriptors.

A converter owns a fixed table mapping each output format token to an
Invocation: the ffmpeg argument template for that format. Formats that
need more than one invocation are listed in PIPELINES and implemented as
``_convert_<format>`` methods on the subclass.
"""

import logging
import threading
from abc import ABC
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Tuple

from ..errors import ConversionError, UnsupportedFormatError
from ..ffmpeg_runner import FfmpegRunner


@dataclass(frozen=True)
class Invocation:
    """FFmpeg argument template with {input} and {output} placeholders."""

    args: Tuple[str, ...]

    def render(self, input_path: str, output_path: str) -> List[str]:
        return [arg.format(input=input_path, output=output_path) for arg in self.args]


def simple(*codec_args: str) -> Invocation:
    """Single pass: overwrite, read input, apply codec flags, write output."""
    return Invocation(("-y", "-i", "{input}") + codec_args + ("{output}",))


class Converter(ABC):
    """Base class for per-kind conversion strategies."""

    kind: str = ""
    INVOCATIONS: Dict[str, Invocation] = {}
    PIPELINES: Tuple[str, ...] = ()

    def __init__(self, runner: Optional[FfmpegRunner] = None, logger: Optional[logging.Logger] = None):
        self.runner = runner or FfmpegRunner()
        self.logger = logger or logging.getLogger(__name__)

    def supported_formats(self) -> FrozenSet[str]:
        return frozenset(self.INVOCATIONS) | frozenset(self.PIPELINES)

    def build_command(self, input_path: str, format: str, output_path: str) -> List[str]:
        """Render the single-invocation arguments for ``format``.

        Raises:
            UnsupportedFormatError: format unknown or only available as a pipeline
        """
        invocation = self.INVOCATIONS.get(format)
        if invocation is None:
            raise UnsupportedFormatError(self.kind, format)
        return invocation.render(input_path, output_path)

    def convert(
        self,
        input_path: str,
        format: str,
        output_path: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        """Convert ``input_path`` to ``format`` at ``output_path``.

        Raises:
            ConversionError: empty paths or external tool failure
            UnsupportedFormatError: format not offered by this converter
        """
        self._validate_paths(input_path, output_path)

        if format in self.PIPELINES:
            pipeline = getattr(self, f"_convert_{format}")
            pipeline(input_path, output_path, cancel_event)
            return

        args = self.build_command(input_path, format, output_path)
        self.runner.run_step("convert", args, cancel_event)

    @staticmethod
    def _validate_paths(input_path: str, output_path: str) -> None:
        if not input_path:
            raise ConversionError("validate", "input path cannot be empty")
        if not output_path:
            raise ConversionError("validate", "output path cannot be empty")
