"""
Django management command for converting a media URL.

Submits the URL to the conversion engine and polls the task until it is
completed or failed, the same way a web client would.
"""

import json
import time

from django.core.management.base import BaseCommand, CommandError

from conversions.engine import ConversionEngine
from conversions.models import TaskStatus
from conversions.service.artifacts import format_file_size
from conversions.service.config import get_default_quality
from conversions.service.probe import ProbeError, probe_media
from conversions.service.quality import QUALITY_CHOICES, InvalidRequest


class Command(BaseCommand):
    help = 'Convert a remote media URL into an MP4 artifact'

    def add_arguments(self, parser):
        parser.add_argument('url', type=str, help='Media URL')
        parser.add_argument(
            '--quality',
            type=str,
            default=None,
            help=f'Quality, one of {", ".join(QUALITY_CHOICES)} (default: from settings)',
        )
        parser.add_argument(
            '--poll-interval',
            type=float,
            default=1.0,
            help='Seconds between status polls (default: 1.0)',
        )
        parser.add_argument(
            '--info',
            action='store_true',
            help='Show media information without downloading',
        )
        parser.add_argument('--json', action='store_true', help='Output result as JSON')

    def handle(self, *args, **options):
        url = options['url']
        quality = options['quality'] or get_default_quality()
        output_json = options['json']

        if options['info']:
            self._show_info(url, output_json)
            return

        engine = ConversionEngine().start()
        try:
            try:
                task_id = engine.submit(url, quality)
            except InvalidRequest as e:
                raise CommandError(f'Invalid request: {e}')

            if not output_json:
                self.stdout.write(f'Task {task_id}: {url} ({quality})')

            task = self._poll(engine, task_id, options['poll_interval'], output_json)
        finally:
            engine.shutdown()

        if output_json:
            self.stdout.write(json.dumps(task.as_dict(), indent=2))

        if task.status == TaskStatus.FAILED:
            raise CommandError(f'Conversion failed ({task.error.kind}): {task.error.message}')

        if not output_json:
            self.stdout.write(
                self.style.SUCCESS(
                    f'Completed: {task.filename} ({format_file_size(task.artifact_size)})'
                )
            )

    def _poll(self, engine, task_id, interval, quiet):
        last_progress = None
        while True:
            task = engine.get(task_id)
            if task is None:
                raise CommandError(f'Task {task_id} disappeared from the registry')

            if task.is_terminal:
                return task

            if not quiet and task.status == TaskStatus.PROCESSING:
                if task.progress != last_progress:
                    self.stdout.write(f'  {task.progress}%')
                    last_progress = task.progress

            time.sleep(interval)

    def _show_info(self, url, output_json):
        try:
            info = probe_media(url)
        except ProbeError as e:
            raise CommandError(str(e))

        if output_json:
            self.stdout.write(json.dumps(info.as_dict(), indent=2))
            return

        self.stdout.write(f'Title: {info.title}')
        self.stdout.write(f'Uploader: {info.uploader}')
        if info.duration_seconds is not None:
            minutes, seconds = divmod(info.duration_seconds, 60)
            self.stdout.write(f'Duration: {minutes}:{seconds:02d}')
        if info.upload_date:
            self.stdout.write(f'Upload date: {info.upload_date}')
        if info.view_count is not None:
            self.stdout.write(f'Views: {info.view_count}')
