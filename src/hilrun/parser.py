# Copyright (c) Syntropy Systems
"""Sentinel-marker verdict detection over line-oriented device output."""
from __future__ import annotations

import logging
import queue
import time
from dataclasses import dataclass, field
from enum import Enum
from threading import Thread
from typing import IO, TYPE_CHECKING, Union

from hilrun.models.session import Outcome

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

logger = logging.getLogger(__name__)

DEFAULT_SUCCESS_MARKER = "TEST-SUCCESS"
DEFAULT_FAILURE_MARKER = "TEST-FAIL"

Line = Union[str, bytes]


class Verdict(str, Enum):
    """Parser verdict for one output stream."""

    PASS = "pass"
    FAIL = "fail"
    TIMEOUT = "timeout"
    # Stream closed without any marker
    INDETERMINATE = "indeterminate"

    @property
    def outcome(self) -> Outcome:
        """Map to a run outcome; indeterminate fails closed."""
        if self is Verdict.PASS:
            return Outcome.PASS
        if self is Verdict.TIMEOUT:
            return Outcome.TIMEOUT
        return Outcome.FAIL

    @property
    def terminal(self) -> bool:
        """Whether a marker decided the verdict."""
        return self in (Verdict.PASS, Verdict.FAIL)


@dataclass(frozen=True)
class MarkerSet:
    """Success and failure sentinels.

    Matching is case-sensitive substring containment on each line.
    """

    success: tuple[str, ...] = (DEFAULT_SUCCESS_MARKER,)
    failure: tuple[str, ...] = (DEFAULT_FAILURE_MARKER,)

    def __post_init__(self) -> None:
        if not self.success or not self.failure:
            msg = "success and failure marker sets must both be non-empty"
            raise ValueError(msg)
        if any(not m for m in (*self.success, *self.failure)):
            msg = "markers must be non-empty strings"
            raise ValueError(msg)
        overlap = set(self.success) & set(self.failure)
        if overlap:
            msg = f"markers cannot be both success and failure: {sorted(overlap)}"
            raise ValueError(msg)

    @classmethod
    def from_lists(cls, success: Iterable[str], failure: Iterable[str]) -> MarkerSet:
        return cls(success=tuple(success), failure=tuple(failure))

    def failure_in(self, line: str) -> str | None:
        return next((m for m in self.failure if m in line), None)

    def success_in(self, line: str) -> str | None:
        return next((m for m in self.success if m in line), None)


@dataclass
class ParseResult:
    """Verdict plus the evidence that produced it."""

    verdict: Verdict
    line: str | None = None
    marker: str | None = None
    lines: list[str] = field(default_factory=list)

    @property
    def output(self) -> str:
        return "\n".join(self.lines)


class OutputParser:
    """Classifies device output as pass, fail, timeout or indeterminate.

    Lines are scanned in arrival order and scanning stops at the first
    terminal marker, so nothing printed afterwards can flip the verdict.
    A line carrying both kinds of marker counts as a failure.
    """

    markers: MarkerSet

    def __init__(self, markers: MarkerSet | None = None) -> None:
        self.markers = markers or MarkerSet()

    def feed(self, line: Line) -> ParseResult | None:
        """Classify a single line; returns a result only for terminal lines."""
        text = decode_line(line)
        marker = self.markers.failure_in(text)
        if marker is not None:
            return ParseResult(Verdict.FAIL, line=text, marker=marker)
        marker = self.markers.success_in(text)
        if marker is not None:
            return ParseResult(Verdict.PASS, line=text, marker=marker)
        return None

    def parse(
        self,
        lines: Iterable[Line],
        on_line: Callable[[str], None] | None = None,
    ) -> ParseResult:
        """Scan a finite line sequence."""
        seen: list[str] = []
        for line in lines:
            text = decode_line(line)
            seen.append(text)
            if on_line is not None:
                on_line(text)
            result = self.feed(text)
            if result is not None:
                result.lines = seen
                return result
        return ParseResult(Verdict.INDETERMINATE, lines=seen)

    def parse_stream(
        self,
        stream: IO[bytes] | IO[str],
        timeout: float,
        on_line: Callable[[str], None] | None = None,
    ) -> ParseResult:
        """Scan a live stream until a terminal marker, EOF, or the deadline.

        The stream is read on a daemon thread so a silent device cannot
        block past the deadline. On TIMEOUT the caller must terminate
        whatever is writing to the stream; that also unblocks the reader.
        """
        lines: queue.Queue[Line | None] = queue.Queue()

        def pump() -> None:
            try:
                for raw in stream:
                    lines.put(raw)
            except (OSError, ValueError) as e:
                # Pipe closed under us after a kill
                logger.debug("Output stream closed: %s", e)
            finally:
                lines.put(None)

        reader = Thread(target=pump, name="hilrun-output-reader", daemon=True)
        reader.start()

        seen: list[str] = []
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.debug("No marker within %.1fs", timeout)
                return ParseResult(Verdict.TIMEOUT, lines=seen)
            try:
                raw = lines.get(timeout=remaining)
            except queue.Empty:
                continue
            if raw is None:
                return ParseResult(Verdict.INDETERMINATE, lines=seen)
            text = decode_line(raw)
            seen.append(text)
            logger.debug("device: %s", text)
            if on_line is not None:
                on_line(text)
            result = self.feed(text)
            if result is not None:
                result.lines = seen
                return result


def decode_line(line: Line) -> str:
    """Decode and strip the line terminator.

    Consoles emit undecodable bytes while a board reboots; those are
    replaced rather than dropped.
    """
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    return line.rstrip("\r\n")

