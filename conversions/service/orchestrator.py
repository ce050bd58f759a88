"""
Conversion process orchestration.

Runs the external converter (yt-dlp) for one request: builds its arguments,
feeds its stdout through the progress parser, keeps a bounded tail of its
stderr, enforces the wall-clock ceiling and turns the way it ended into a
single ConversionOutcome. Nothing here touches the task registry.
"""

import shlex
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from django.utils import timezone

from conversions.models import ErrorKind, TaskError, TaskStatus
from conversions.service.artifacts import build_output_filename, format_file_size
from conversions.service.config import (
    get_conversion_timeout,
    get_converter_binary,
    get_download_dir,
    get_kill_grace,
    get_stderr_limit,
    get_ytdlp_extra_args,
)
from conversions.service.progress import ProgressParser
from conversions.service.quality import format_selector

READ_CHUNK_SIZE = 4096

# How long to wait for the stderr reader after the process has exited
STDERR_JOIN_TIMEOUT = 5


@dataclass
class ConversionOutcome:
    """Terminal result of one converter run"""

    status: str
    filename: Optional[str] = None
    path: Optional[Path] = None
    file_size: Optional[int] = None
    error_kind: Optional[str] = None
    message: str = ''
    exit_code: Optional[int] = None

    @classmethod
    def completed(cls, path, file_size, exit_code=0):
        path = Path(path)
        return cls(
            status=TaskStatus.COMPLETED,
            filename=path.name,
            path=path,
            file_size=file_size,
            exit_code=exit_code,
        )

    @classmethod
    def failed(cls, error_kind, message, exit_code=None):
        return cls(
            status=TaskStatus.FAILED,
            error_kind=error_kind,
            message=message,
            exit_code=exit_code,
        )

    @property
    def succeeded(self):
        return self.status == TaskStatus.COMPLETED

    def as_task_fields(self):
        """Fields for the single terminal registry update"""
        if self.succeeded:
            return {
                'status': TaskStatus.COMPLETED,
                'progress': 100,
                'filename': self.filename,
                'artifact_size': self.file_size,
            }
        return {
            'status': TaskStatus.FAILED,
            'error': TaskError(kind=self.error_kind, message=self.message),
        }


class StderrBuffer:
    """Keeps the last `limit` bytes written to a stream"""

    def __init__(self, limit):
        self.limit = limit
        self.truncated = False
        self._data = bytearray()
        self._lock = threading.Lock()

    def drain(self, stream):
        for chunk in iter(lambda: stream.read1(READ_CHUNK_SIZE), b''):
            with self._lock:
                self._data += chunk
                overflow = len(self._data) - self.limit
                if overflow > 0:
                    del self._data[:overflow]
                    self.truncated = True

    def text(self):
        with self._lock:
            return bytes(self._data).decode('utf-8', errors='replace')


class Watchdog:
    """
    Wall-clock ceiling for a running process.

    When the timer fires before the process has exited, terminate() is sent
    once. If the process is still alive kill_grace seconds later it is killed.
    cancel() must be called as soon as the process exits on its own.
    """

    def __init__(self, process, timeout, kill_grace=10, log=None):
        self.process = process
        self.timeout = timeout
        self.kill_grace = kill_grace
        self.fired = False
        self._log = log or (lambda message: None)
        self._cancelled = False
        self._lock = threading.Lock()
        self._timer = threading.Timer(timeout, self._expire)
        self._timer.daemon = True

    def start(self):
        self._timer.start()

    def cancel(self):
        with self._lock:
            self._cancelled = True
        self._timer.cancel()

    def _expire(self):
        with self._lock:
            if self._cancelled or self.process.poll() is not None:
                return
            self.fired = True
            self._log(f'Timeout after {self.timeout} seconds, terminating converter')
            self.process.terminate()

        _reap(self.process, self.kill_grace, self._log)


def _reap(process, kill_grace, log):
    """Wait for a terminated process, killing it if it outlives kill_grace"""
    try:
        process.wait(timeout=kill_grace)
    except subprocess.TimeoutExpired:
        # Second signal only for a process that ignored terminate()
        log(f'Converter ignored terminate for {kill_grace} seconds, killing')
        process.kill()
        process.wait()


def build_converter_args(url, selector, output_path, command=None, extra_args=None):
    """
    Build the converter command line.

    Args:
        url: Source URL
        selector: yt-dlp format selector string
        output_path: Final artifact path
        command: Command prefix (default: [converter binary from settings])
        extra_args: Extra arguments placed before the URL

    Returns:
        list: argv for subprocess
    """
    command = list(command) if command else [get_converter_binary()]
    return [
        *command,
        '--format',
        selector,
        '--output',
        str(output_path),
        '--no-playlist',
        '--merge-output-format',
        'mp4',
        '--newline',
        '--progress-template',
        'download:%(progress)j',
        '--no-warnings',
        *(extra_args or []),
        url,
    ]


def run_conversion(
    url,
    quality,
    output_dir=None,
    on_progress=None,
    timeout=None,
    created_at=None,
    command=None,
    extra_args=None,
    kill_grace=None,
    stderr_limit=None,
    logger=None,
):
    """
    Convert a remote media URL into an artifact using the external converter.

    Blocks until the converter exits or the ceiling is reached; callers run
    it on a background thread.

    Args:
        url: Source URL
        quality: Quality token (resolved through the quality resolver)
        output_dir: Artifact directory (default from settings)
        on_progress: Optional callable(int) for each parsed percentage
        timeout: Wall-clock ceiling in seconds (default from settings)
        created_at: Timestamp used in the artifact name (default: now)
        command: Converter command prefix (default: [converter binary])
        extra_args: Extra converter arguments (default from settings)
        kill_grace: Seconds between terminate and kill on timeout
        stderr_limit: Bytes of stderr kept for diagnostics
        logger: Optional callable(str) for logging

    Returns:
        ConversionOutcome
    """

    def log(message):
        if logger:
            logger(message)

    output_dir = Path(output_dir) if output_dir else get_download_dir()
    output_dir.mkdir(parents=True, exist_ok=True)
    timeout = get_conversion_timeout() if timeout is None else timeout
    kill_grace = get_kill_grace() if kill_grace is None else kill_grace
    stderr_limit = get_stderr_limit() if stderr_limit is None else stderr_limit
    extra_args = get_ytdlp_extra_args() if extra_args is None else extra_args

    selector = format_selector(quality)
    filename = build_output_filename(url, created_at or timezone.now())
    output_path = output_dir / filename
    args = build_converter_args(url, selector, output_path, command=command, extra_args=extra_args)

    log(f'Starting conversion: {url} ({quality})')
    log(f'Format: {selector}')
    log(f'Command: {shlex.join(args)}')

    try:
        process = subprocess.Popen(  # noqa: S603
            args,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except FileNotFoundError:
        log(f'Converter not found: {args[0]}')
        return ConversionOutcome.failed(
            ErrorKind.DEPENDENCY_MISSING, f'{args[0]} is not installed or not in PATH'
        )
    except OSError as e:
        log(f'Converter failed to start: {e}')
        return ConversionOutcome.failed(ErrorKind.PROCESS_FAILURE, f'Process error: {e}')

    stderr_buffer = StderrBuffer(stderr_limit)
    stderr_thread = threading.Thread(
        target=stderr_buffer.drain, args=(process.stderr,), name='converter-stderr', daemon=True
    )
    stderr_thread.start()

    watchdog = Watchdog(process, timeout, kill_grace=kill_grace, log=log)
    watchdog.start()

    parser = ProgressParser(on_progress)
    try:
        try:
            for chunk in iter(lambda: process.stdout.read1(READ_CHUNK_SIZE), b''):
                parser.feed(chunk)
            parser.close()
        except BaseException:
            # The converter must not outlive this call
            watchdog.cancel()
            if not watchdog.fired and process.poll() is None:
                log('Conversion aborted, terminating converter')
                process.terminate()
                _reap(process, kill_grace, log)
            raise
        returncode = process.wait()
    finally:
        watchdog.cancel()
        stderr_thread.join(timeout=STDERR_JOIN_TIMEOUT)
        process.stdout.close()
        process.stderr.close()

    return _classify_exit(returncode, watchdog.fired, output_path, stderr_buffer, timeout, log)


def _classify_exit(returncode, timed_out, output_path, stderr_buffer, timeout, log):
    if timed_out:
        return ConversionOutcome.failed(
            ErrorKind.TIMED_OUT,
            f'Conversion timeout ({timeout} seconds)',
            exit_code=returncode,
        )

    if returncode != 0:
        diagnostic = stderr_buffer.text().strip()
        log(f'Converter failed with code {returncode}')
        if diagnostic:
            log(f'Error details: {diagnostic}')
        message = f'Converter exited with code {returncode}'
        if diagnostic:
            message = f'{message}: {diagnostic}'
        return ConversionOutcome.failed(ErrorKind.PROCESS_FAILURE, message, exit_code=returncode)

    # Exit code 0 alone is not proof of an artifact
    if not output_path.is_file():
        log(f'Output file not found: {output_path}')
        return ConversionOutcome.failed(
            ErrorKind.EMPTY_ARTIFACT, 'Output file not found', exit_code=returncode
        )

    file_size = output_path.stat().st_size
    if file_size == 0:
        log(f'Output file is empty: {output_path}')
        output_path.unlink(missing_ok=True)
        return ConversionOutcome.failed(
            ErrorKind.EMPTY_ARTIFACT, 'Downloaded file is empty', exit_code=returncode
        )

    log(f'Conversion completed: {output_path.name} ({format_file_size(file_size)})')
    return ConversionOutcome.completed(output_path, file_size, exit_code=returncode)
