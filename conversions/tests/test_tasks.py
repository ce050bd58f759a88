import tempfile
import threading
import time
from pathlib import Path
from unittest.mock import patch

from django.test import SimpleTestCase

from conversions.models import ErrorKind, TaskStatus
from conversions.registry import TaskRegistry
from conversions.service.orchestrator import ConversionOutcome
from conversions.tasks import ConversionRunner, process_conversion, write_log
from conversions.tests.stubs import BOOM, EMPTY_ARTIFACT, HANG, SUCCESS, stub_command

URL = 'https://www.youtube.com/watch?v=abc123'

# Slow progress so a poller sees the task while it is processing
SLOW_PROGRESS = '''\
for percent in range(0, 101, 10):
    print(json.dumps({'status': 'downloading', 'percent': percent}), flush=True)
    print('[download] some log line', flush=True)
    time.sleep(0.02)
with open(output, 'wb') as f:
    f.write(b'data')
'''

VALID_SEQUENCES = (
    [TaskStatus.PENDING, TaskStatus.PROCESSING, TaskStatus.COMPLETED],
    [TaskStatus.PENDING, TaskStatus.PROCESSING, TaskStatus.FAILED],
)


def collapse(statuses):
    """Drop consecutive repeats: [a, a, b, b, c] -> [a, b, c]"""
    result = []
    for status in statuses:
        if not result or result[-1] != status:
            result.append(status)
    return result


class TempDirMixin:
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)
        self.output_dir = self.tmp / 'downloads'
        self.log_dir = self.tmp / 'logs'
        self.registry = TaskRegistry(max_tasks=10)

    def tearDown(self):
        self._tmp.cleanup()

    def convert(self, body, task_id=None, **kwargs):
        task_id = task_id or self.registry.create({'url': URL, 'quality': '720p'})
        outcome = process_conversion(
            self.registry,
            task_id,
            output_dir=self.output_dir,
            log_dir=self.log_dir,
            command=stub_command(self.tmp, body),
            extra_args=[],
            **kwargs,
        )
        return task_id, outcome


class WriteLogTest(SimpleTestCase):
    def test_appends_timestamped_lines(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            log_path = Path(temp_dir) / 'nested' / 'task.log'
            write_log(log_path, 'first')
            write_log(log_path, 'second')

            lines = log_path.read_text().splitlines()
            self.assertEqual(len(lines), 2)
            self.assertTrue(lines[0].startswith('['))
            self.assertTrue(lines[0].endswith('] first'))

    def test_no_path_is_noop(self):
        write_log(None, 'ignored')


class ProcessConversionTest(TempDirMixin, SimpleTestCase):
    """Tests for the per-task background unit"""

    def test_completed(self):
        task_id, outcome = self.convert(SUCCESS, timeout=30)
        task = self.registry.get(task_id)

        self.assertTrue(outcome.succeeded)
        self.assertEqual(task.status, TaskStatus.COMPLETED)
        self.assertEqual(task.progress, 100)
        self.assertEqual(task.filename, outcome.filename)
        self.assertEqual(task.artifact_size, outcome.file_size)
        self.assertTrue((self.output_dir / task.filename).is_file())
        self.assertIsNone(task.error)

    def test_writes_task_log(self):
        task_id, _outcome = self.convert(SUCCESS, timeout=30)

        log_text = (self.log_dir / f'{task_id}.log').read_text()
        self.assertIn('=== TASK STARTED ===', log_text)
        self.assertIn(URL, log_text)
        self.assertIn('=== COMPLETED', log_text)

    def test_empty_artifact_fails(self):
        task_id, _outcome = self.convert(EMPTY_ARTIFACT, timeout=30)
        task = self.registry.get(task_id)

        self.assertEqual(task.status, TaskStatus.FAILED)
        self.assertEqual(task.error.kind, ErrorKind.EMPTY_ARTIFACT)
        self.assertIsNone(task.filename)

    def test_process_failure(self):
        task_id, _outcome = self.convert(BOOM, timeout=30)
        task = self.registry.get(task_id)

        self.assertEqual(task.status, TaskStatus.FAILED)
        self.assertEqual(task.error.kind, ErrorKind.PROCESS_FAILURE)
        self.assertIn('boom', task.error.message)

    def test_timed_out(self):
        task_id, _outcome = self.convert(HANG, timeout=0.5, kill_grace=5)
        task = self.registry.get(task_id)

        self.assertEqual(task.status, TaskStatus.FAILED)
        self.assertEqual(task.error.kind, ErrorKind.TIMED_OUT)

    def test_dependency_missing(self):
        task_id = self.registry.create({'url': URL, 'quality': '720p'})
        process_conversion(
            self.registry,
            task_id,
            output_dir=self.output_dir,
            log_dir=self.log_dir,
            command=[str(self.tmp / 'missing-yt-dlp')],
            extra_args=[],
        )

        task = self.registry.get(task_id)
        self.assertEqual(task.status, TaskStatus.FAILED)
        self.assertEqual(task.error.kind, ErrorKind.DEPENDENCY_MISSING)

    def test_unknown_task(self):
        self.assertIsNone(process_conversion(self.registry, 'nope', log_dir=self.log_dir))

    def test_unexpected_error_recorded_on_task(self):
        task_id = self.registry.create({'url': URL, 'quality': '720p'})
        with patch('conversions.tasks.run_conversion', side_effect=RuntimeError('disk on fire')):
            outcome = process_conversion(self.registry, task_id, log_dir=self.log_dir)

        task = self.registry.get(task_id)
        self.assertFalse(outcome.succeeded)
        self.assertEqual(task.status, TaskStatus.FAILED)
        self.assertEqual(task.error.kind, ErrorKind.PROCESS_FAILURE)
        self.assertIn('disk on fire', task.error.message)

    def test_evicted_while_running(self):
        """Test that finishing after eviction drops the update without raising"""
        task_id = self.registry.create({'url': URL, 'quality': '720p'})

        def evict_then_finish(*args, **kwargs):
            self.registry.delete(task_id)
            return ConversionOutcome.completed(self.tmp / 'video_1_abc.mp4', 10)

        with patch('conversions.tasks.run_conversion', side_effect=evict_then_finish):
            outcome = process_conversion(self.registry, task_id, log_dir=self.log_dir)

        self.assertTrue(outcome.succeeded)
        self.assertIsNone(self.registry.get(task_id))
        self.assertEqual(len(self.registry), 0)

    def test_observed_status_sequence_and_progress(self):
        """Test what a poller sees: pending -> processing -> completed, progress non-decreasing"""
        task_id = self.registry.create({'url': URL, 'quality': '720p'})
        statuses = []
        progress_seen = []
        done = threading.Event()

        def poll():
            while not done.is_set():
                task = self.registry.get(task_id)
                statuses.append(task.status)
                if task.status == TaskStatus.PROCESSING:
                    progress_seen.append(task.progress)
                time.sleep(0.002)

        poller = threading.Thread(target=poll)
        poller.start()
        time.sleep(0.01)
        try:
            self.convert(SLOW_PROGRESS, task_id=task_id, timeout=30)
        finally:
            time.sleep(0.01)
            done.set()
            poller.join()

        self.assertIn(collapse(statuses), VALID_SEQUENCES)
        self.assertEqual(collapse(statuses)[-1], TaskStatus.COMPLETED)
        self.assertEqual(progress_seen, sorted(progress_seen))
        self.assertTrue(all(0 <= value <= 100 for value in progress_seen))


class ConversionRunnerTest(TempDirMixin, SimpleTestCase):
    """Tests for launching background units"""

    def make_runner(self, body, **kwargs):
        return ConversionRunner(
            self.registry,
            output_dir=self.output_dir,
            log_dir=self.log_dir,
            command=stub_command(self.tmp, body),
            extra_args=[],
            timeout=30,
            **kwargs,
        )

    def test_launch_and_join(self):
        runner = self.make_runner(SUCCESS)
        task_id = self.registry.create({'url': URL, 'quality': '720p'})

        thread = runner.launch(task_id)

        self.assertEqual(thread.name, f'conversion-{task_id}')
        self.assertTrue(runner.join(task_id, timeout=30))
        self.assertEqual(self.registry.get(task_id).status, TaskStatus.COMPLETED)
        self.assertEqual(runner.running(), [])

    def test_launch_returns_before_processing(self):
        """Test that launch does not wait for the converter"""
        runner = self.make_runner(SLOW_PROGRESS)
        task_id = self.registry.create({'url': URL, 'quality': '720p'})

        started = time.monotonic()
        runner.launch(task_id)
        self.assertLess(time.monotonic() - started, 0.2)

        runner.shutdown(wait=True, timeout=30)
        self.assertEqual(self.registry.get(task_id).status, TaskStatus.COMPLETED)

    def test_shutdown_rejects_new_tasks(self):
        runner = self.make_runner(SUCCESS)
        self.assertFalse(runner.closed)
        runner.shutdown()
        self.assertTrue(runner.closed)

        with self.assertRaises(RuntimeError):
            runner.launch(self.registry.create({'url': URL, 'quality': '720p'}))

    def test_bounded_concurrency(self):
        """Test that with one slot a second task waits in pending"""
        runner = self.make_runner(SLOW_PROGRESS, max_concurrent=1)
        first = self.registry.create({'url': URL, 'quality': '720p'})
        second = self.registry.create({'url': URL + '&n=2', 'quality': '720p'})

        runner.launch(first)
        deadline = time.monotonic() + 10
        while self.registry.get(first).status == TaskStatus.PENDING and time.monotonic() < deadline:
            time.sleep(0.01)
        runner.launch(second)
        time.sleep(0.05)

        self.assertEqual(self.registry.get(first).status, TaskStatus.PROCESSING)
        self.assertEqual(self.registry.get(second).status, TaskStatus.PENDING)

        self.assertEqual(runner.shutdown(wait=True, timeout=30), [])
        self.assertEqual(self.registry.get(first).status, TaskStatus.COMPLETED)
        self.assertEqual(self.registry.get(second).status, TaskStatus.COMPLETED)

    def test_join_unknown_task(self):
        runner = self.make_runner(SUCCESS)
        self.assertTrue(runner.join('never-launched'))
