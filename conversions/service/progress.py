"""
Progress parsing for converter output.

yt-dlp is started with a JSON progress template, but the same stdout also
carries ordinary log lines. Reading lines and deciding what a line means are
kept apart: LineBuffer only splits the stream, decode_progress only judges a
single line, and lines that are not progress JSON are simply skipped.
"""

import json
import math


class LineBuffer:
    """
    Incremental line splitter.

    Keeps a partial trailing line across chunk boundaries and returns only
    complete lines.
    """

    def __init__(self, encoding='utf-8'):
        self.encoding = encoding
        self._pending = b''

    def feed(self, chunk):
        """
        Add a chunk of output.

        Args:
            chunk: bytes or str

        Returns:
            list: Complete lines (str, without line terminators)
        """
        if isinstance(chunk, str):
            chunk = chunk.encode(self.encoding)

        data = self._pending + chunk
        *complete, self._pending = data.split(b'\n')
        return [self._decode(raw) for raw in complete]

    def flush(self):
        """Return the trailing unterminated line, if any"""
        raw, self._pending = self._pending, b''
        if not raw:
            return []
        return [self._decode(raw)]

    def _decode(self, raw):
        return raw.decode(self.encoding, errors='replace').rstrip('\r')


def _as_percent(value):
    """Coerce a candidate percentage; None if not a usable number in [0, 100]"""
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().rstrip('%').strip()
        try:
            value = float(value)
        except ValueError:
            return None
    if not isinstance(value, (int, float)):
        return None
    if math.isnan(value) or value < 0 or value > 100:
        return None
    return value


def _percent_from_payload(payload):
    for key in ('percent', '_percent', '_percent_str'):
        if key in payload:
            percent = _as_percent(payload[key])
            if percent is not None:
                return percent

    downloaded = payload.get('downloaded_bytes')
    total = payload.get('total_bytes') or payload.get('total_bytes_estimate')
    if (
        isinstance(downloaded, (int, float))
        and isinstance(total, (int, float))
        and not isinstance(downloaded, bool)
        and total > 0
    ):
        return _as_percent(downloaded / total * 100)

    return None


def decode_progress(line):
    """
    Decode one output line into a percentage.

    Args:
        line: A complete line of converter stdout

    Returns:
        int or None: Percentage in [0, 100] for an active-download progress
        line, None for anything else
    """
    line = line.strip()
    if not line.startswith('{'):
        return None

    try:
        payload = json.loads(line)
    except ValueError:
        return None

    if not isinstance(payload, dict) or payload.get('status') != 'downloading':
        return None

    percent = _percent_from_payload(payload)
    if percent is None:
        return None
    return int(round(percent))


class ProgressParser:
    """
    Feed converter stdout in, get percentages out through a callback.

    Args:
        callback: Optional callable(int) invoked for each decoded percentage
    """

    def __init__(self, callback=None):
        self.callback = callback
        self.last_percent = None
        self._lines = LineBuffer()

    def feed(self, chunk):
        for line in self._lines.feed(chunk):
            self._handle(line)

    def close(self):
        for line in self._lines.flush():
            self._handle(line)

    def _handle(self, line):
        percent = decode_progress(line)
        if percent is None:
            return
        self.last_percent = percent
        if self.callback:
            self.callback(percent)
