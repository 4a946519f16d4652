import unittest

from contentjobs.jobs.progress import ProgressReporter


class ProgressReporterTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.events = []

        async def _record(event) -> None:
            self.events.append(event)

        self.reporter = ProgressReporter(_record)

    async def test_reports_reach_callback(self) -> None:
        await self.reporter.report(progress=1, total=2, message="half")
        self.assertEqual(len(self.events), 1)
        self.assertEqual((self.events[0].progress, self.events[0].total, self.events[0].message), (1, 2, "half"))

    async def test_progress_never_moves_backwards(self) -> None:
        await self.reporter.report(progress=50, total=100)
        await self.reporter.report(progress=20, total=100)
        await self.reporter.report(progress=1, total=4)
        self.assertEqual([event.progress for event in self.events], [50, 50, 2])

    async def test_callback_failures_are_dropped(self) -> None:
        async def broken(event) -> None:
            raise RuntimeError("listener gone")

        reporter = ProgressReporter(broken)
        with self.assertLogs("contentjobs.progress", level="WARNING"):
            await reporter.report(progress=1, total=1)


if __name__ == "__main__":
    unittest.main()
