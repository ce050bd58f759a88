"""
Artifact naming, lookup and cleanup.

The core only promises that an artifact exists and is non-empty when its task
is marked completed. Serving and deleting it afterwards belongs to whoever
resolves the filename token.
"""

import hashlib
from datetime import datetime, timedelta
from pathlib import Path

from django.utils import timezone

from conversions.service.config import get_download_dir

ARTIFACT_PREFIX = 'video_'
ARTIFACT_EXTENSION = '.mp4'


def _url_hash(url: str) -> str:
    """Generate a short hash for a URL to use in file names."""
    return hashlib.md5(url.encode()).hexdigest()[:8]


def build_output_filename(url: str, created_at: datetime) -> str:
    """
    Derive a filesystem-safe artifact name from the URL and a timestamp.

    The raw URL never appears in the name; the same URL converted at
    different times gets different names.
    """
    timestamp_ms = int(created_at.timestamp() * 1000)
    return f'{ARTIFACT_PREFIX}{timestamp_ms}_{_url_hash(url)}{ARTIFACT_EXTENSION}'


def resolve_artifact(filename, directory=None):
    """
    Map a completed task's filename token to the stored file.

    Args:
        filename: Bare file name from Task.filename
        directory: Artifact directory (default from settings)

    Returns:
        Path or None if the token is not a bare file name or nothing is stored
    """
    if not filename or Path(filename).name != filename or filename in ('.', '..'):
        return None

    directory = Path(directory) if directory else get_download_dir()
    path = directory / filename
    if not path.is_file():
        return None
    return path


def format_file_size(size):
    """
    Format file size in human readable form.

    >>> format_file_size(1536)
    '1.5 KB'
    """
    if size <= 0:
        return '0 Bytes'

    units = ['Bytes', 'KB', 'MB', 'GB', 'TB']
    value = float(size)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f'{round(value, 2):g} {units[index]}'


def cleanup_stale_artifacts(directory=None, max_age=None, now=None, dry_run=False, logger=None):
    """
    Remove artifacts whose modification time is older than max_age.

    Only files directly inside the directory are considered; the logs
    subdirectory and anything else nested is left alone.

    Args:
        directory: Artifact directory (default from settings)
        max_age: timedelta (default 24 hours)
        now: Aware datetime used as the reference point
        dry_run: If True, report without deleting
        logger: Optional callable(str) for logging

    Returns:
        list: Paths that were (or, for dry_run, would be) removed
    """

    def log(message):
        if logger:
            logger(message)

    directory = Path(directory) if directory else get_download_dir()
    max_age = max_age if max_age is not None else timedelta(hours=24)
    now = now or timezone.now()

    if not directory.exists():
        log(f'Artifact directory does not exist: {directory}')
        return []

    removed = []
    for path in sorted(directory.iterdir()):
        if not path.is_file():
            continue
        modified = datetime.fromtimestamp(path.stat().st_mtime, tz=now.tzinfo)
        if now - modified <= max_age:
            continue

        if not dry_run:
            path.unlink(missing_ok=True)
        log(f'Cleaned up old file: {path.name}')
        removed.append(path)

    return removed
