"""
Configuration adapter for conversion settings.

Centralizes access to Django settings so the service layer, the background
units and the management commands read the same values.
"""

import shlex
from datetime import timedelta
from pathlib import Path

from django.conf import settings


def get_download_dir():
    """Directory where finished artifacts are written"""
    return Path(settings.CLIPFORGE_DOWNLOAD_DIR)


def get_log_dir():
    """Directory for per-task log files"""
    return get_download_dir() / 'logs'


def get_converter_binary():
    return settings.CLIPFORGE_CONVERTER_BINARY


def get_ytdlp_extra_args():
    """
    Extra yt-dlp arguments from settings.

    Returns:
        list: Arguments split shell-style, e.g. ['--proxy', 'socks5://host:1080']
    """
    args_string = settings.CLIPFORGE_YTDLP_EXTRA_ARGS
    if not args_string:
        return []
    return shlex.split(args_string)


def get_default_quality():
    return settings.CLIPFORGE_DEFAULT_QUALITY


def get_conversion_timeout():
    """Wall-clock ceiling per conversion, in seconds"""
    return settings.CLIPFORGE_CONVERSION_TIMEOUT


def get_kill_grace():
    return settings.CLIPFORGE_KILL_GRACE


def get_stderr_limit():
    return settings.CLIPFORGE_STDERR_LIMIT


def get_max_tasks():
    return settings.CLIPFORGE_MAX_TASKS


def get_task_ttl():
    return timedelta(seconds=settings.CLIPFORGE_TASK_TTL)


def get_sweep_interval():
    """Seconds between terminal-task expiry sweeps"""
    return settings.CLIPFORGE_SWEEP_INTERVAL


def get_recent_limit():
    return settings.CLIPFORGE_RECENT_LIMIT


def get_max_concurrent():
    """Simultaneous converter processes allowed; 0 means unbounded"""
    return settings.CLIPFORGE_MAX_CONCURRENT


def get_artifact_max_age():
    return timedelta(seconds=settings.CLIPFORGE_ARTIFACT_MAX_AGE)
