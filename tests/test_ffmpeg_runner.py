"""Unit tests for the FFmpeg runner.

Tests cover:
- Command construction
- Error classification
- Refusal to start once cancellation is requested
- Timeout handling
- Step errors raised to converters
"""

import subprocess
import threading
from unittest.mock import MagicMock, patch

import pytest

from conversion_worker.errors import ConversionCancelledError, ConversionError
from conversion_worker.ffmpeg_runner import FfmpegErrorType, FfmpegResult, FfmpegRunner


def make_process(returncode=0, stdout="", stderr=""):
    process = MagicMock()
    process.communicate.return_value = (stdout, stderr)
    process.returncode = returncode
    return process


@pytest.fixture
def runner():
    return FfmpegRunner(ffmpeg_path="/usr/bin/ffmpeg")


class TestBuildCommand:
    def test_prefixes_global_flags(self, runner):
        cmd = runner.build_command(["-y", "-i", "in.mov", "out.mp4"])
        assert cmd == [
            "/usr/bin/ffmpeg", "-hide_banner", "-loglevel", "error", "-y", "-i", "in.mov", "out.mp4",
        ]

    def test_bundled_binary_when_no_path(self):
        with patch("imageio_ffmpeg.get_ffmpeg_exe", return_value="/bundled/ffmpeg"):
            cmd = FfmpegRunner(loglevel="warning").build_command(["x"])
        assert cmd[:4] == ["/bundled/ffmpeg", "-hide_banner", "-loglevel", "warning"]


class TestErrorClassification:
    """Test FFmpeg error classification."""

    @pytest.mark.parametrize("stderr", [
        "in.mov: No such file or directory",
        "Invalid data found when processing input",
        "Unknown encoder 'libfoo'",
        "moov atom not found",
    ])
    def test_permanent(self, runner, stderr):
        assert runner._classify_error(stderr) == FfmpegErrorType.PERMANENT

    @pytest.mark.parametrize("stderr", ["No space left on device", "I/O error", "something odd"])
    def test_transient(self, runner, stderr):
        assert runner._classify_error(stderr) == FfmpegErrorType.TRANSIENT


class TestRun:
    def test_success(self, runner):
        with patch("subprocess.Popen", return_value=make_process()) as popen:
            result = runner.run(["-i", "a", "b"])

        assert result.success
        assert result.returncode == 0
        assert result.error_type is None
        assert popen.call_args[0][0][0] == "/usr/bin/ffmpeg"

    def test_failure_is_classified(self, runner):
        process = make_process(returncode=1, stderr="a.mov: No such file or directory")
        with patch("subprocess.Popen", return_value=process):
            result = runner.run(["-i", "a.mov", "b.mp4"])

        assert not result.success
        assert result.error_type == FfmpegErrorType.PERMANENT

    def test_cancelled_never_starts_process(self, runner):
        cancel = threading.Event()
        cancel.set()
        with patch("subprocess.Popen") as popen:
            with pytest.raises(ConversionCancelledError):
                runner.run(["-i", "a", "b"], cancel_event=cancel)
        popen.assert_not_called()

    def test_timeout_kills_process(self):
        runner = FfmpegRunner(ffmpeg_path="ffmpeg", timeout_s=5)
        process = MagicMock()
        process.communicate.side_effect = [
            subprocess.TimeoutExpired(cmd="ffmpeg", timeout=5),
            ("", "killed"),
        ]
        with patch("subprocess.Popen", return_value=process):
            result = runner.run(["-i", "a", "b"])

        process.kill.assert_called_once()
        assert not result.success
        assert result.returncode == -1
        assert result.error_type == FfmpegErrorType.TIMEOUT


class TestRunStep:
    def test_failure_raises_with_step_and_stderr(self, runner):
        stderr = "\n".join(f"line {i}" for i in range(20)) + "\nInvalid data found"
        with patch("subprocess.Popen", return_value=make_process(returncode=1, stderr=stderr)):
            with pytest.raises(ConversionError) as exc_info:
                runner.run_step("palette", ["-i", "a", "b"])

        error = exc_info.value
        assert error.step == "palette"
        assert error.returncode == 1
        assert error.error_type == "permanent"
        assert error.stderr.endswith("Invalid data found")
        assert "line 0" not in error.stderr

    def test_missing_executable(self, runner):
        with patch("subprocess.Popen", side_effect=FileNotFoundError("ffmpeg")):
            with pytest.raises(ConversionError) as exc_info:
                runner.run_step("convert", ["-i", "a", "b"])
        assert "could not start ffmpeg" in str(exc_info.value)

    def test_cancelled_step_keeps_step_name(self, runner):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(ConversionCancelledError) as exc_info:
            runner.run_step("extract", ["x"], cancel_event=cancel)
        assert exc_info.value.step == "extract"

    def test_success_returns_result(self, runner):
        with patch("subprocess.Popen", return_value=make_process(stdout="ok")):
            result = runner.run_step("convert", ["-i", "a", "b"])
        assert isinstance(result, FfmpegResult)
        assert result.stdout == "ok"


class TestCheck:
    def test_check_ok(self, runner):
        with patch("subprocess.run") as run:
            assert runner.check()
        assert run.call_args[0][0] == ["/usr/bin/ffmpeg", "-version"]

    def test_check_missing(self, runner):
        with patch("subprocess.run", side_effect=FileNotFoundError):
            assert not runner.check()


def test_stderr_tail():
    result = FfmpegResult(False, 1, "", "a\nb\nc\n", 0.0)
    assert result.stderr_tail(2) == "b\nc"
