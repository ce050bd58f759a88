"""
Media metadata lookup.

Asks yt-dlp for information about a URL without downloading anything.
"""

from dataclasses import dataclass
from typing import Optional

import yt_dlp


class ProbeError(Exception):
    """Raised when metadata for a URL cannot be extracted"""


@dataclass
class MediaInfo:
    """Metadata for a single video"""

    url: str
    title: Optional[str] = None
    duration_seconds: Optional[int] = None
    uploader: Optional[str] = None
    upload_date: Optional[str] = None
    view_count: Optional[int] = None
    like_count: Optional[int] = None
    description: Optional[str] = None

    def as_dict(self):
        return {
            'url': self.url,
            'title': self.title,
            'duration_seconds': self.duration_seconds,
            'uploader': self.uploader,
            'upload_date': self.upload_date,
            'view_count': self.view_count,
            'like_count': self.like_count,
            'description': self.description,
        }


def probe_media(url, logger=None):
    """
    Get video info without downloading.

    Args:
        url: Source URL
        logger: Optional callable(str) for logging

    Returns:
        MediaInfo

    Raises:
        ProbeError: If yt-dlp cannot extract information
    """

    def log(message):
        if logger:
            logger(message)

    ydl_opts = {
        'quiet': True,
        'no_warnings': True,
        'noplaylist': True,
        'skip_download': True,
    }

    log(f'Probing with yt-dlp: {url}')

    try:
        with yt_dlp.YoutubeDL(ydl_opts) as ydl:
            info = ydl.extract_info(url, download=False)
    except yt_dlp.utils.DownloadError as e:
        raise ProbeError(f'Failed to get video info: {e}') from e

    if not info:
        raise ProbeError('Failed to get video info: no information returned')

    duration = info.get('duration')
    return MediaInfo(
        url=info.get('webpage_url') or url,
        title=info.get('title'),
        duration_seconds=int(duration) if duration is not None else None,
        uploader=info.get('uploader') or info.get('channel'),
        upload_date=info.get('upload_date'),
        view_count=info.get('view_count'),
        like_count=info.get('like_count'),
        description=info.get('description'),
    )
