"""Unit tests for timestamped console output."""

import io
import re

import pytest

from solbuild import output

TIMESTAMP = re.compile(r"^\d{2}:\d{2}\.\d{2} ")


@pytest.fixture
def stream():
    previous = output.current_stream()
    buffer = io.StringIO()
    output.init_timer(buffer)
    output.set_verbose(False)
    yield buffer
    output.init_timer(previous)
    output.set_verbose(False)


def lines(buffer: io.StringIO) -> list[str]:
    return [TIMESTAMP.sub("", line) for line in buffer.getvalue().splitlines()]


class TestLog:
    def test_timestamp_prefix(self, stream: io.StringIO) -> None:
        output.log("hello")
        assert TIMESTAMP.match(stream.getvalue())
        assert lines(stream) == ["hello"]

    def test_format_timestamp(self) -> None:
        assert output.format_timestamp(75.5) == "01:15.50"
        assert output.format_timestamp(0.0) == "00:00.00"

    def test_verbose_only_suppressed(self, stream: io.StringIO) -> None:
        output.log("quiet", verbose_only=True)
        output.log_unit("0.8.2", "contracts/A.sol")
        assert stream.getvalue() == ""

        output.set_verbose(True)
        assert output.is_verbose()
        output.log_unit("0.8.2", "contracts/A.sol", cached=True)
        assert lines(stream) == ["      [0.8.2] contracts/A.sol (cached)"]

    def test_formats(self, stream: io.StringIO) -> None:
        output.log_phase(2, 3, "Compiling...")
        output.log_detail("contracts/A.sol -> 0.8.2")
        output.log_error("boom")
        output.log_warning("careful")
        output.log_build_complete(1.234)
        assert lines(stream) == [
            "[2/3] Compiling...",
            "      contracts/A.sol -> 0.8.2",
            "ERROR: boom",
            "WARNING: careful",
            "Build time: 1.23s",
        ]


class TestTimedStep:
    def test_logs_done_on_success(self, stream: io.StringIO) -> None:
        with output.timed_step("Generating bindings", phase=(3, 3)) as step:
            step.detail("wrote 2 files")
        result = lines(stream)
        assert result[0] == "[3/3] Generating bindings..."
        assert result[1] == "      wrote 2 files"
        assert re.match(r"^      Done \(\d+\.\d{2}s\)$", result[2])

    def test_no_done_on_error(self, stream: io.StringIO) -> None:
        with pytest.raises(RuntimeError):
            with output.timed_step("Failing step"):
                raise RuntimeError("x")
        assert lines(stream) == ["Failing step..."]
