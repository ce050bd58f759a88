"""
Tests for service/config.py
"""

from datetime import timedelta
from pathlib import Path

from django.db import connections
from django.test import SimpleTestCase, override_settings

from conversions.service.config import (
    get_artifact_max_age,
    get_conversion_timeout,
    get_converter_binary,
    get_download_dir,
    get_log_dir,
    get_max_concurrent,
    get_max_tasks,
    get_sweep_interval,
    get_task_ttl,
    get_ytdlp_extra_args,
)


class ConfigServiceTest(SimpleTestCase):
    """Tests for configuration adapter"""

    def test_defaults(self):
        """Test the documented default values"""
        self.assertEqual(get_conversion_timeout(), 30 * 60)
        self.assertEqual(get_max_tasks(), 100)
        self.assertEqual(get_task_ttl(), timedelta(hours=24))
        self.assertEqual(get_sweep_interval(), 60 * 60)
        self.assertEqual(get_max_concurrent(), 0)
        self.assertEqual(get_artifact_max_age(), timedelta(hours=24))
        self.assertEqual(get_converter_binary(), 'yt-dlp')

    @override_settings(CLIPFORGE_DOWNLOAD_DIR='/srv/clipforge')
    def test_download_and_log_dirs(self):
        self.assertEqual(get_download_dir(), Path('/srv/clipforge'))
        self.assertEqual(get_log_dir(), Path('/srv/clipforge/logs'))

    @override_settings(CLIPFORGE_YTDLP_EXTRA_ARGS='')
    def test_no_extra_args(self):
        self.assertEqual(get_ytdlp_extra_args(), [])

    @override_settings(CLIPFORGE_YTDLP_EXTRA_ARGS='--proxy "socks5://127.0.0.1:1080" --geo-bypass')
    def test_extra_args_split(self):
        self.assertEqual(
            get_ytdlp_extra_args(), ['--proxy', 'socks5://127.0.0.1:1080', '--geo-bypass']
        )

    def test_no_database_configured(self):
        """Test that tasks never depend on a database backend"""
        self.assertEqual(connections['default'].settings_dict['ENGINE'], 'django.db.backends.dummy')

    @override_settings(CLIPFORGE_TASK_TTL=60)
    def test_task_ttl_override(self):
        self.assertEqual(get_task_ttl(), timedelta(minutes=1))
