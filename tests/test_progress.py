import io
import itertools
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import progress


class FakeProcess:
    """Stands in for Popen: alive for `ticks` polls, then exits."""

    def __init__(self, ticks: int, returncode: int = 0):
        self._ticks = ticks
        self._returncode = returncode
        self.returncode = None

    def poll(self):
        if self._ticks > 0:
            self._ticks -= 1
            return None
        self.returncode = self._returncode
        return self.returncode


def write_frames(output_dir: Path, start: int, count: int) -> None:
    for idx in range(start, start + count):
        (output_dir / f"frame{idx:08d}.jpg").write_bytes(b"jpg")


def last_status_line(text: str) -> str:
    return text.rstrip("\n").split("\r")[-1].strip()


class TestComputeProgress(unittest.TestCase):
    def test_rate_and_eta_from_quarter_progress(self):
        snapshot = progress.compute_progress(total=100, completed=25, elapsed=50.0)

        self.assertEqual(snapshot.rate, 0.5)
        self.assertEqual(snapshot.eta_seconds, 150.0)
        self.assertEqual(snapshot.percent, 25)
        self.assertEqual(progress.format_eta(snapshot.eta_seconds), "2m 30s")
        self.assertEqual(
            progress.format_progress_line(snapshot),
            "Upscaling: 25% (25/100) | ETA: 2m 30s",
        )

    def test_zero_completed_uses_placeholder(self):
        for elapsed in (0.0, 1.0, 3600.0):
            snapshot = progress.compute_progress(total=100, completed=0, elapsed=elapsed)
            self.assertEqual(snapshot.percent, 0)
            self.assertIsNone(snapshot.rate)
            self.assertIsNone(snapshot.eta_seconds)
            self.assertEqual(
                progress.format_progress_line(snapshot),
                "Upscaling: 0% (0/100) | ETA: --m --s",
            )

    def test_zero_elapsed_skips_rate(self):
        snapshot = progress.compute_progress(total=10, completed=3, elapsed=0.0)

        self.assertEqual(snapshot.percent, 30)
        self.assertIsNone(snapshot.rate)
        self.assertEqual(progress.format_eta(snapshot.eta_seconds), "--m --s")

    def test_percent_is_floored(self):
        snapshot = progress.compute_progress(total=3, completed=2, elapsed=4.0)
        self.assertEqual(snapshot.percent, 66)

    def test_remaining_never_negative(self):
        snapshot = progress.compute_progress(total=5, completed=6, elapsed=2.0)
        self.assertEqual(snapshot.eta_seconds, 0.0)


class TestFormatEta(unittest.TestCase):
    def test_whole_minutes_and_rounded_seconds(self):
        self.assertEqual(progress.format_eta(0.0), "0m 0s")
        self.assertEqual(progress.format_eta(59.4), "0m 59s")
        self.assertEqual(progress.format_eta(125.0), "2m 5s")

    def test_rounding_carries_into_minutes(self):
        self.assertEqual(progress.format_eta(119.7), "2m 0s")


class TestCountOutputFrames(unittest.TestCase):
    def test_counts_only_jpg_files(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            output_dir = Path(temp_dir)
            write_frames(output_dir, 1, 3)
            (output_dir / "frame00000004.png").touch()

            self.assertEqual(progress.count_output_frames(output_dir), 3)

    def test_missing_directory_counts_zero(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            self.assertEqual(progress.count_output_frames(Path(temp_dir) / "missing"), 0)


class TestMonitorUpscale(unittest.TestCase):
    def test_status_line_updates_in_place_until_exit(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            output_dir = Path(temp_dir)
            written = itertools.count(1, 2)
            sleeps = []

            def fake_sleep(interval):
                sleeps.append(interval)
                write_frames(output_dir, next(written), 2)

            stream = io.StringIO()
            final = progress.monitor_upscale(
                FakeProcess(ticks=2),
                output_dir,
                4,
                start_time=0.0,
                poll_interval=1.0,
                clock=itertools.count(1).__next__,
                sleep=fake_sleep,
                file=stream,
            )

        text = stream.getvalue()
        self.assertEqual(sleeps, [1.0, 1.0])
        self.assertIn("Upscaling: 0% (0/4) | ETA: --m --s", text)
        self.assertIn("Upscaling: 50% (2/4) | ETA: 0m 2s", text)
        self.assertEqual(last_status_line(text), "Upscaling: 100% (4/4) | ETA: 0m 0s")
        self.assertEqual(text.count("\n"), 1)
        self.assertEqual(final.completed, 4)
        self.assertEqual(final.percent, 100)

    def test_final_line_reports_actual_count_on_shortfall(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            output_dir = Path(temp_dir)

            def fake_sleep(_interval):
                write_frames(output_dir, 1, 3)

            stream = io.StringIO()
            process = FakeProcess(ticks=1, returncode=1)
            final = progress.monitor_upscale(
                process,
                output_dir,
                4,
                start_time=0.0,
                clock=itertools.count(1).__next__,
                sleep=fake_sleep,
                file=stream,
            )

        self.assertEqual(final.completed, 3)
        self.assertEqual(final.percent, 75)
        self.assertEqual(last_status_line(stream.getvalue()), "Upscaling: 75% (3/4) | ETA: 0m 0s")
        self.assertEqual(process.returncode, 1)

    def test_status_line_defaults_to_stdout(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            output_dir = Path(temp_dir)
            write_frames(output_dir, 1, 2)

            with mock.patch("sys.stdout", new_callable=io.StringIO) as stdout_mock, \
                    mock.patch("sys.stderr", new_callable=io.StringIO) as stderr_mock:
                progress.monitor_upscale(
                    FakeProcess(ticks=0),
                    output_dir,
                    2,
                    start_time=0.0,
                    clock=lambda: 1.0,
                    sleep=lambda _interval: None,
                )

        self.assertEqual(
            last_status_line(stdout_mock.getvalue()),
            "Upscaling: 100% (2/2) | ETA: 0m 0s",
        )
        self.assertNotIn("Upscaling", stderr_mock.getvalue())

    def test_already_exited_process_reports_once(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            output_dir = Path(temp_dir)
            write_frames(output_dir, 1, 2)
            sleeps = []

            stream = io.StringIO()
            final = progress.monitor_upscale(
                FakeProcess(ticks=0),
                output_dir,
                2,
                start_time=0.0,
                clock=lambda: 0.0,
                sleep=sleeps.append,
                file=stream,
            )

        self.assertEqual(sleeps, [])
        self.assertEqual(final.percent, 100)
        self.assertEqual(last_status_line(stream.getvalue()), "Upscaling: 100% (2/2) | ETA: 0m 0s")


if __name__ == "__main__":
    unittest.main()
