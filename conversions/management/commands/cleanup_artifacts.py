"""
Management command to clean up stale conversion artifacts.

Finds and removes files in the download directory that were never fetched
(or never cleaned up after serving) once they pass the maximum age.
"""

from datetime import timedelta

from django.core.management.base import BaseCommand

from conversions.service.artifacts import cleanup_stale_artifacts, format_file_size
from conversions.service.config import get_artifact_max_age, get_download_dir


class Command(BaseCommand):
    help = 'Remove conversion artifacts older than the maximum age'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be deleted without actually deleting',
        )
        parser.add_argument(
            '--max-age',
            type=float,
            default=None,
            help='Maximum age in hours before an artifact is removed (default: from settings)',
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        if options['max_age'] is not None:
            max_age = timedelta(hours=options['max_age'])
        else:
            max_age = get_artifact_max_age()

        download_dir = get_download_dir()
        sizes = {}

        def log(message):
            if options['verbosity'] > 1:
                self.stdout.write(message)

        if download_dir.exists():
            sizes = {path: path.stat().st_size for path in download_dir.iterdir() if path.is_file()}

        removed = cleanup_stale_artifacts(download_dir, max_age=max_age, dry_run=dry_run, logger=log)

        if not removed:
            self.stdout.write(self.style.SUCCESS('No stale artifacts found'))
            return

        total_size = sum(sizes.get(path, 0) for path in removed)
        for path in removed:
            self.stdout.write(f'  {path.name} ({format_file_size(sizes.get(path, 0))})')

        noun = 'artifact' if len(removed) == 1 else 'artifacts'
        if dry_run:
            self.stdout.write(
                self.style.WARNING(
                    f'DRY RUN: Would delete {len(removed)} {noun} ({format_file_size(total_size)})'
                )
            )
            self.stdout.write('Run without --dry-run to actually delete')
            return

        self.stdout.write(
            self.style.SUCCESS(f'Deleted {len(removed)} {noun} ({format_file_size(total_size)})')
        )
