"""Video conversion, including the two multi-step exports.

- gif: palette generation pass, then a palette-use encode pass
- images: frame extraction into a temporary directory, then a ZIP archive
"""

import os
import shutil
import tempfile
import threading
import zipfile
from pathlib import Path
from typing import Optional

from ..errors import ConversionError
from .base import Converter, simple

GIF_FILTERS = "scale=480:-1:flags=lanczos,fps=15"
PALETTE_GEN = f"{GIF_FILTERS},palettegen=stats_mode=diff"
PALETTE_USE = f"{GIF_FILTERS},paletteuse=dither=floyd_steinberg"
FRAME_PATTERN = "frame_%04d.png"


class VideoConverter(Converter):
    """Transcodes video containers, extracts audio, exports GIFs and frame archives."""

    kind = "video"
    INVOCATIONS = {
        "mp4": simple("-c:v", "libx264", "-f", "mp4"),
        "avi": simple("-c:v", "libx264", "-f", "avi"),
        "mkv": simple("-c:v", "libx264", "-f", "matroska"),
        "mov": simple("-c:v", "libx264", "-f", "mov"),
        "flv": simple("-c:v", "libx264", "-f", "flv"),
        "wmv": simple("-c:v", "libx264", "-f", "asf"),
        "mp3": simple("-vn", "-acodec", "libmp3lame"),
        "wav": simple(),
    }
    PIPELINES = ("gif", "images")

    def _convert_gif(self, input_path: str, output_path: str, cancel_event: Optional[threading.Event]) -> None:
        # Palette lives in a per-job directory so concurrent workers never share it
        temp_dir = tempfile.mkdtemp(prefix="palette_")
        palette_path = os.path.join(temp_dir, "palette.png")
        try:
            self.runner.run_step("palette", [
                "-y", "-i", input_path,
                "-vf", PALETTE_GEN,
                palette_path,
            ], cancel_event)

            self.runner.run_step("encode", [
                "-y", "-i", input_path, "-i", palette_path,
                "-lavfi", PALETTE_USE,
                "-loop", "0",
                output_path,
            ], cancel_event)
        finally:
            shutil.rmtree(temp_dir, ignore_errors=True)

    def _convert_images(self, input_path: str, output_path: str, cancel_event: Optional[threading.Event]) -> None:
        temp_dir = tempfile.mkdtemp(prefix="frames_")
        try:
            self.runner.run_step("extract", [
                "-y", "-i", input_path,
                "-pix_fmt", "rgb24", "-q:v", "1",
                os.path.join(temp_dir, FRAME_PATTERN),
            ], cancel_event)

            count = create_zip(temp_dir, output_path)
            self.logger.debug("Archived %d frames into %s", count, output_path)
        finally:
            shutil.rmtree(temp_dir, ignore_errors=True)


def create_zip(source_dir: str, zip_path: str) -> int:
    """Store every regular file of ``source_dir`` at the root of a new ZIP.

    Returns:
        Number of files archived

    Raises:
        ConversionError: the archive could not be written (partial file removed)
    """
    files = sorted(
        entry for entry in Path(source_dir).iterdir() if entry.is_file()
    )
    try:
        with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for path in files:
                archive.write(path, arcname=path.name)
    except (OSError, zipfile.BadZipFile) as e:
        Path(zip_path).unlink(missing_ok=True)
        raise ConversionError("archive", f"failed to create ZIP file: {e}") from e
    return len(files)
