"""Summarise query request lines from Loki and Cortex logs as a table.

Reads logfmt lines from standard input, keeps the ``GET`` requests to the
query APIs and prints their timestamp, trace ID, queried range, duration,
status and path.
"""

from __future__ import annotations

import argparse
import re
import sys
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Sequence, TextIO
from urllib.parse import parse_qsl, unquote, urlsplit

_PAIR = re.compile(r'(\S+)=(".*?"|\S+)')
_LAYOUT = "2006-01-02T15:04:05.999999999Z"
_TIMESTAMP = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?Z"
)
_INTEGER = re.compile(r"[+-]?\d+")
_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")
_QUERY_PREFIXES = ("GET /loki/api/", "GET /api/prom")
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ZERO_TIME = "0001-01-01 00:00:00 +0000 UTC"
# Timestamps above this are taken as nanoseconds, below as seconds.
_MAX_SECONDS_TIMESTAMP = 9999999999

_NUMBER = re.compile(r"(\d*)(\.(\d*))?")
_UNIT = re.compile(r"[^\d.]*")
_UNITS_NS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "μs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}


@dataclass
class LogEntry:
    """What one log line says about a query request; durations are in seconds."""

    timestamp: datetime | None = None
    nanosecond: int = 0
    trace_id: str = ""
    length: float = 0.0
    duration: float = 0.0
    status: str = ""
    path: str = ""
    query: str = ""
    is_query: bool = False
    errors: list[str] = field(default_factory=list)


def _parse_duration_ns(text: str) -> int:
    original = text
    negative = False
    if text and text[0] in "+-":
        negative = text[0] == "-"
        text = text[1:]
    if text == "0":
        return 0
    if not text:
        raise ValueError(f'time: invalid duration "{original}"')

    total = 0
    position = 0
    while position < len(text):
        number = _NUMBER.match(text, position)
        whole, fraction = number.group(1), number.group(3) or ""
        if not whole and not fraction:
            raise ValueError(f'time: invalid duration "{original}"')
        position = number.end()
        unit = _UNIT.match(text, position).group(0)
        position += len(unit)
        if not unit:
            raise ValueError(f'time: missing unit in duration "{original}"')
        if unit not in _UNITS_NS:
            raise ValueError(f'time: unknown unit "{unit}" in duration "{original}"')
        scale = _UNITS_NS[unit]
        total += int(whole or 0) * scale
        if fraction:
            total += int(fraction) * scale // 10 ** len(fraction)
    return -total if negative else total


def parse_duration(text: str) -> float:
    """Parse a duration such as ``1h2m3.5s`` or ``250ms`` into seconds."""
    return _parse_duration_ns(text) / 1e9


def _decimal(value: int, digits: int) -> str:
    whole, fraction = divmod(value, 10**digits)
    if not fraction:
        return str(whole)
    return f"{whole}." + f"{fraction:0{digits}d}".rstrip("0")


def format_duration(seconds: float) -> str:
    """Format seconds the way durations print, e.g. ``1m30s``, ``1.5s`` or ``500ms``."""
    nanos = round(seconds * 1e9)
    if nanos == 0:
        return "0s"
    sign = "-" if nanos < 0 else ""
    value = abs(nanos)

    if value < 1_000:
        return f"{sign}{value}ns"
    if value < 1_000_000:
        return f"{sign}{_decimal(value, 3)}µs"
    if value < 1_000_000_000:
        return f"{sign}{_decimal(value, 6)}ms"

    total_seconds, fraction = divmod(value, 1_000_000_000)
    seconds_text = _decimal((total_seconds % 60) * 1_000_000_000 + fraction, 9) + "s"
    minutes = total_seconds // 60
    hours, minutes_left = divmod(minutes, 60)
    if hours:
        return f"{sign}{hours}h{minutes_left}m{seconds_text}"
    if minutes:
        return f"{sign}{minutes_left}m{seconds_text}"
    return sign + seconds_text


def _parse_timestamp(text: str) -> tuple[datetime, int]:
    match = _TIMESTAMP.fullmatch(text)
    error = f'parsing time "{text}" as "{_LAYOUT}": cannot parse'
    if match is None:
        raise ValueError(error)
    year, month, day, hour, minute, second = (int(g) for g in match.groups()[:6])
    nanos = int((match.group(7) or "0")[:9].ljust(9, "0"))
    try:
        moment = datetime(
            year, month, day, hour, minute, second, nanos // 1000, tzinfo=timezone.utc
        )
    except ValueError as exc:
        raise ValueError(f"{error}: {exc}") from None
    return moment, nanos


def _timestamp_ns(moment: datetime, nanos: int) -> int:
    whole = (moment.replace(microsecond=0) - _EPOCH) // timedelta(seconds=1)
    return whole * 1_000_000_000 + nanos


def _range_length(start: str, end: str) -> float:
    if _INTEGER.fullmatch(start) and _INTEGER.fullmatch(end):
        first, last = int(start), int(end)
        # Loki timestamps are in nanoseconds, Prometheus ones in seconds.
        if first > _MAX_SECONDS_TIMESTAMP:
            return (last - first) / 1e9
        return float(last - first)
    first_ns = _timestamp_ns(*_parse_timestamp(start))
    last_ns = _timestamp_ns(*_parse_timestamp(end))
    return (last_ns - first_ns) / 1e9


def _parse_query(query: str) -> dict[str, str]:
    if _BAD_ESCAPE.search(query):
        raise ValueError(f"invalid URL escape in {query!r}")
    values: dict[str, str] = {}
    for key, value in parse_qsl(query, keep_blank_values=True):
        values.setdefault(key, value)
    return values


def _apply_message(entry: LogEntry, raw: str) -> None:
    message = raw.replace('"', "")
    if not message.startswith(_QUERY_PREFIXES):
        return
    entry.is_query = True

    parts = message.split(" ")
    if len(parts) < 4:
        entry.errors.append(f"malformed request message {message!r}")
        return

    try:
        url = urlsplit(parts[1])
        values = _parse_query(url.query)
    except ValueError as exc:
        entry.errors.append(str(exc))
        return

    start, end = values.get("start", ""), values.get("end", "")
    if start and end:
        try:
            entry.length = _range_length(start, end)
        except ValueError as exc:
            entry.errors.append(str(exc))
            return

    entry.status = parts[2]
    entry.path = unquote(url.path)
    entry.query = values.get("query", "")

    try:
        entry.duration = parse_duration(parts[3])
    except ValueError as exc:
        entry.errors.append(str(exc))


def parse_line(line: str) -> LogEntry:
    """Extract the request details from one logfmt line.

    Problems are collected in ``errors``; parsing carries on with the
    remaining fields.
    """
    entry = LogEntry()
    for key, raw in _PAIR.findall(line):
        if key == "traceID":
            entry.trace_id = raw
        elif key == "ts":
            try:
                entry.timestamp, entry.nanosecond = _parse_timestamp(raw)
            except ValueError as exc:
                entry.timestamp, entry.nanosecond = None, 0
                entry.errors.append(str(exc))
        elif key == "msg":
            _apply_message(entry, raw)
    return entry


def _format_timestamp(entry: LogEntry, utc: bool) -> str:
    if entry.timestamp is None:
        return _ZERO_TIME
    moment = entry.timestamp if utc else entry.timestamp.astimezone()
    fraction = f".{entry.nanosecond:09d}".rstrip("0") if entry.nanosecond else ""
    offset = moment.strftime("%z")
    name = moment.tzname() or offset
    return f"{moment:%Y-%m-%d %H:%M:%S}{fraction} {offset} {name}"


class _TabWriter:
    """Aligns tab-separated cells into columns; the last cell of a row is not padded."""

    def __init__(self, out: TextIO, padding: int = 2) -> None:
        self._out = out
        self._padding = padding
        self._rows: list[list[str]] = []

    def write_row(self, cells: Sequence[str]) -> None:
        self._rows.append(list(cells))

    def flush(self) -> None:
        rows, self._rows = self._rows, []
        columns = max((len(row) - 1 for row in rows), default=0)
        widths = [
            max((len(row[i]) for row in rows if i < len(row) - 1), default=0)
            + self._padding
            for i in range(columns)
        ]
        for row in rows:
            padded = "".join(cell.ljust(widths[i]) for i, cell in enumerate(row[:-1]))
            self._out.write(padded + (row[-1] if row else "") + "\n")
        self._out.flush()


def _duration_arg(text: str) -> float:
    try:
        return parse_duration(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from None


def main(argv: Sequence[str] | None = None) -> int:
    """Read log lines from standard input and print the query requests as a table."""
    parser = argparse.ArgumentParser(
        prog="logtool", description="Show query requests found in log lines."
    )
    parser.add_argument("-query", "--query", action="store_true", help="show the query")
    parser.add_argument(
        "-dur",
        "--dur",
        type=_duration_arg,
        default=0.0,
        help="only show queries which took longer than this duration, e.g. 10s",
    )
    parser.add_argument(
        "-utc", "--utc", action="store_true", help="show timestamp in UTC time"
    )
    args = parser.parse_args(argv)

    stdin, stdout = sys.stdin, sys.stdout
    is_pipe = not stdin.isatty()
    writer = _TabWriter(stdout)

    headings = ["Timestamp", "TraceID", "Length", "Duration", "Status", "Path"]
    if args.query:
        headings.append("Query")
    writer.write_row(headings)

    for raw_line in stdin:
        line = raw_line.rstrip("\n").rstrip("\r")
        entry = parse_line(line)
        for error in entry.errors:
            print(error, line, file=stdout)

        if entry.is_query and entry.duration > args.dur:
            row = [
                _format_timestamp(entry, args.utc),
                entry.trace_id,
                format_duration(entry.length),
                format_duration(entry.duration),
                entry.status,
                entry.path,
            ]
            if args.query:
                row.append(entry.query)
            writer.write_row(row)
            # At a terminal lines are pasted one at a time, so show each at once.
            if not is_pipe:
                writer.flush()

    stdout.write("\n")
    writer.flush()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())