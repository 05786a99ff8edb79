"""FFmpeg runner with cancellation checks, timeout enforcement and error classification.

This module runs the external media tool on behalf of the converters. It
never interprets media itself: a converter hands it an argument list and
gets back an FfmpegResult describing how the process ended.

Key Features:
- Process isolation with subprocess.Popen
- Refuses to start when the cancellation signal is already set
- Optional per-invocation timeout (process is killed on expiry)
- Error classification for diagnostics (permanent / transient / timeout)
"""

import logging
import subprocess
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from .errors import ConversionCancelledError, ConversionError


class FfmpegErrorType(Enum):
    """FFmpeg error classification."""
    PERMANENT = "permanent"     # File not found, invalid format, codec error
    TRANSIENT = "transient"     # Disk I/O stall, resource exhaustion
    TIMEOUT = "timeout"         # Invocation exceeded timeout_s


@dataclass
class FfmpegResult:
    """Result of FFmpeg execution."""
    success: bool
    returncode: int
    stdout: str
    stderr: str
    duration_s: float
    error_type: Optional[FfmpegErrorType] = None

    def stderr_tail(self, lines: int = 10) -> str:
        return "\n".join(self.stderr.strip().splitlines()[-lines:])


class FfmpegRunner:
    """FFmpeg orchestration shared by every converter.

    Example:
        >>> runner = FfmpegRunner(timeout_s=600)
        >>> runner.run_step("encode", ["-y", "-i", "in.mov", "out.mp4"])
    """

    def __init__(
        self,
        ffmpeg_path: Optional[str] = None,
        timeout_s: Optional[int] = None,
        loglevel: str = "error",
        logger: Optional[logging.Logger] = None,
    ):
        """Initialize FFmpeg runner.

        Args:
            ffmpeg_path: Executable to run (None = imageio-ffmpeg bundled binary)
            timeout_s: Maximum duration of one invocation (None = no limit)
            loglevel: FFmpeg log level (error, warning, info, verbose)
            logger: Logger for this runner (default: module logger)
        """
        self.ffmpeg_path = ffmpeg_path
        self.timeout_s = timeout_s
        self.loglevel = loglevel
        self.logger = logger or logging.getLogger(__name__)

    def build_command(self, args: List[str]) -> List[str]:
        """Prefix converter arguments with the executable and global flags."""
        return [self._get_ffmpeg_exe(), "-hide_banner", "-loglevel", self.loglevel] + list(args)

    def run(self, args: List[str], cancel_event: Optional[threading.Event] = None) -> FfmpegResult:
        """Execute FFmpeg and wait for it to exit.

        Args:
            args: Arguments after the executable (inputs, codecs, output)
            cancel_event: If already set, the process is not started

        Returns:
            FfmpegResult with execution details

        Raises:
            ConversionCancelledError: cancel_event was set before start
        """
        if cancel_event is not None and cancel_event.is_set():
            raise ConversionCancelledError("ffmpeg")

        cmd = self.build_command(args)
        self.logger.debug("Running: %s", " ".join(cmd))
        start_time = time.time()

        process = subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            stdin=subprocess.DEVNULL,
            text=True,
        )

        timed_out = False
        try:
            stdout, stderr = process.communicate(timeout=self.timeout_s)
            returncode = process.returncode
        except subprocess.TimeoutExpired:
            timed_out = True
            process.kill()
            stdout, stderr = process.communicate()
            returncode = -1

        duration = time.time() - start_time

        error_type = None
        if timed_out:
            error_type = FfmpegErrorType.TIMEOUT
        elif returncode != 0:
            error_type = self._classify_error(stderr or "")

        return FfmpegResult(
            success=(returncode == 0 and not timed_out),
            returncode=returncode,
            stdout=stdout or "",
            stderr=stderr or "",
            duration_s=duration,
            error_type=error_type,
        )

    def run_step(
        self,
        step: str,
        args: List[str],
        cancel_event: Optional[threading.Event] = None,
    ) -> FfmpegResult:
        """Run one named pipeline step and raise ConversionError on failure."""
        if cancel_event is not None and cancel_event.is_set():
            raise ConversionCancelledError(step)

        try:
            result = self.run(args, cancel_event)
        except OSError as e:
            raise ConversionError(step, f"could not start ffmpeg: {e}") from e

        if not result.success:
            if result.error_type == FfmpegErrorType.TIMEOUT:
                reason = f"timed out after {self.timeout_s}s"
            else:
                reason = f"ffmpeg exited with code {result.returncode}"
            raise ConversionError(
                step,
                reason,
                returncode=result.returncode,
                stderr=result.stderr_tail(),
                error_type=result.error_type.value if result.error_type else None,
            )

        self.logger.debug("Step '%s' finished in %.2fs", step, result.duration_s)
        return result

    def check(self) -> bool:
        """Verify the executable runs."""
        try:
            subprocess.run(
                [self._get_ffmpeg_exe(), "-version"],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                check=True,
            )
            return True
        except (FileNotFoundError, subprocess.CalledProcessError, OSError, RuntimeError):
            return False

    def _classify_error(self, stderr: str) -> FfmpegErrorType:
        """Classify FFmpeg error from its stderr output."""
        stderr_lower = stderr.lower()

        permanent_patterns = [
            "no such file or directory",
            "invalid data found",
            "invalid argument",
            "permission denied",
            "unsupported codec",
            "unknown encoder",
            "moov atom not found",
            "does not contain any stream",
            "corrupt",
        ]

        for pattern in permanent_patterns:
            if pattern in stderr_lower:
                return FfmpegErrorType.PERMANENT

        transient_patterns = [
            "i/o error",
            "resource temporarily unavailable",
            "no space left",
            "cannot allocate memory",
        ]

        for pattern in transient_patterns:
            if pattern in stderr_lower:
                return FfmpegErrorType.TRANSIENT

        # Unknown failures count as transient
        return FfmpegErrorType.TRANSIENT

    def _get_ffmpeg_exe(self) -> str:
        """Get FFmpeg executable path."""
        if self.ffmpeg_path:
            return self.ffmpeg_path
        import imageio_ffmpeg
        return imageio_ffmpeg.get_ffmpeg_exe()
