import queue
import unittest
from unittest.mock import MagicMock

from torrent_unpacker.core_logic.torrent_queue import JobKind, QueueStatus, TorrentQueue

from tests.mocks.mock_qbittorrent import make_torrent


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def drain(jobs):
    items = []
    while True:
        try:
            items.append(jobs.get_nowait())
        except queue.Empty:
            return items


class TestTorrentQueueEligibility(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.on_added = MagicMock()
        self.on_updated = MagicMock()
        self.on_removed = MagicMock()
        self.on_queue_full = MagicMock()
        self.tq = TorrentQueue(
            "Unpack",
            on_added=self.on_added,
            on_updated=self.on_updated,
            on_removed=self.on_removed,
            on_queue_full=self.on_queue_full,
            clock=self.clock,
        )

    def test_completed_torrent_without_category_gets_check_job(self):
        self.tq.update([make_torrent("a")])
        jobs = drain(self.tq.check_jobs)
        self.assertEqual(len(jobs), 1)
        self.assertEqual(jobs[0].kind, JobKind.CHECK)
        self.assertEqual(jobs[0].torrent_hash, "a")
        self.assertEqual(self.tq.status("a"), QueueStatus.QUEUED)
        self.assertTrue(self.tq.unpack_jobs.empty())

    def test_unpack_start_category_gets_unpack_job(self):
        self.tq.update([make_torrent("a", category="Unpack")])
        jobs = drain(self.tq.unpack_jobs)
        self.assertEqual([j.kind for j in jobs], [JobKind.UNPACK])
        self.assertTrue(self.tq.check_jobs.empty())

    def test_other_categories_and_incomplete_torrents_are_ignored(self):
        self.tq.update([
            make_torrent("a", category="Completed"),
            make_torrent("b", category="Unpacked"),
            make_torrent("c", state="downloading", progress=0.5, completed=50),
            make_torrent("d", state="stalledDL"),
            make_torrent("e", completed=99),
        ])
        self.assertTrue(self.tq.check_jobs.empty())
        self.assertTrue(self.tq.unpack_jobs.empty())
        self.assertEqual(len(self.tq), 5)
        for h in "abcde":
            self.assertEqual(self.tq.status(h), QueueStatus.IDLE)

    def test_repeated_updates_never_duplicate_jobs(self):
        torrents = [make_torrent("a"), make_torrent("b", category="Unpack")]
        for _ in range(1000):
            self.tq.update(torrents)
        self.assertEqual(self.tq.check_jobs.qsize(), 1)
        self.assertEqual(self.tq.unpack_jobs.qsize(), 1)

    def test_job_done_makes_torrent_eligible_again(self):
        torrent = make_torrent("a")
        self.tq.update([torrent])
        drain(self.tq.check_jobs)

        self.tq.job_done("a")
        self.assertEqual(self.tq.status("a"), QueueStatus.IDLE)
        self.tq.update([torrent])
        self.assertEqual(self.tq.check_jobs.qsize(), 1)

    def test_job_done_is_idempotent_and_ignores_unknown_hashes(self):
        self.tq.update([make_torrent("a", category="Completed")])
        self.tq.job_done("a")
        self.tq.job_done("a")
        self.tq.job_done("missing")
        self.assertEqual(self.tq.status("a"), QueueStatus.IDLE)
        self.assertIsNone(self.tq.status("missing"))

    def test_category_change_is_evaluated_on_next_update(self):
        self.tq.update([make_torrent("a", category="Completed")])
        self.assertTrue(self.tq.unpack_jobs.empty())
        self.tq.update([make_torrent("a", category="Unpack")])
        self.assertEqual(self.tq.unpack_jobs.qsize(), 1)
        self.assertEqual(self.tq.get("a").category, "Unpack")


class TestTorrentQueueCallbacks(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.on_added = MagicMock()
        self.on_updated = MagicMock()
        self.on_removed = MagicMock()
        self.tq = TorrentQueue("Unpack", on_added=self.on_added, on_updated=self.on_updated,
                               on_removed=self.on_removed, clock=self.clock)

    def test_added_once_then_updated_each_poll(self):
        torrent = make_torrent("a", category="Completed")
        for _ in range(4):
            self.tq.update([torrent])
        self.on_added.assert_called_once_with(torrent)
        self.assertEqual(self.on_updated.call_count, 3)
        self.on_removed.assert_not_called()

    def test_removed_fires_once(self):
        self.tq.update([make_torrent("a", category="Completed")])
        self.tq.update([])
        self.tq.update([])
        self.on_removed.assert_called_once()
        self.assertEqual(self.tq.status("a"), QueueStatus.REMOVED)

    def test_removed_entry_is_kept_within_retention(self):
        self.tq.update([make_torrent("a", category="Completed")])
        self.clock.advance(59 * 60)
        self.tq.update([])
        self.assertEqual(len(self.tq), 1)

    def test_removed_entry_is_forgotten_after_retention(self):
        self.tq.update([make_torrent("a", category="Completed")])
        self.tq.update([])
        self.clock.advance(61 * 60)
        self.tq.update([])
        self.assertEqual(len(self.tq), 0)
        self.assertIsNone(self.tq.get("a"))

    def test_reappearing_torrent_is_restored(self):
        torrent = make_torrent("a", category="Completed")
        self.tq.update([torrent])
        self.tq.update([])
        self.tq.update([torrent])
        self.assertEqual(self.tq.status("a"), QueueStatus.IDLE)
        self.on_added.assert_called_once()
        self.assertEqual(self.on_updated.call_count, 1)

    def test_reappearing_torrent_keeps_queued_job(self):
        torrent = make_torrent("a")
        self.tq.update([torrent])
        self.tq.update([])
        self.tq.update([torrent])
        self.assertEqual(self.tq.status("a"), QueueStatus.QUEUED)
        self.assertEqual(self.tq.check_jobs.qsize(), 1)

    def test_job_done_while_removed_applies_on_return(self):
        torrent = make_torrent("a")
        self.tq.update([torrent])
        self.tq.update([])
        self.tq.job_done("a")
        self.assertEqual(self.tq.status("a"), QueueStatus.REMOVED)
        self.tq.update([torrent])
        self.assertEqual(self.tq.status("a"), QueueStatus.QUEUED)
        self.assertEqual(self.tq.check_jobs.qsize(), 2)


class TestTorrentQueueCapacity(unittest.TestCase):
    def test_full_queue_leaves_torrent_idle_and_reports(self):
        on_queue_full = MagicMock()
        tq = TorrentQueue("Unpack", on_queue_full=on_queue_full, check_capacity=1)
        tq.update([make_torrent("a"), make_torrent("b")])

        self.assertEqual(tq.check_jobs.qsize(), 1)
        on_queue_full.assert_called_once()
        torrent, job = on_queue_full.call_args[0]
        self.assertEqual(job.kind, JobKind.CHECK)
        self.assertEqual(tq.status(torrent.hash), QueueStatus.IDLE)

        drain(tq.check_jobs)
        tq.update([make_torrent("a"), make_torrent("b")])
        self.assertEqual(tq.status(torrent.hash), QueueStatus.QUEUED)

    def test_full_unpack_queue_leaves_torrent_idle_and_reports(self):
        on_queue_full = MagicMock()
        tq = TorrentQueue("Unpack", on_queue_full=on_queue_full, unpack_capacity=1)
        tq.update([make_torrent("a", category="Unpack"), make_torrent("b", category="Unpack")])

        self.assertEqual(tq.unpack_jobs.qsize(), 1)
        self.assertTrue(tq.check_jobs.empty())
        on_queue_full.assert_called_once()
        torrent, job = on_queue_full.call_args[0]
        self.assertEqual(job.kind, JobKind.UNPACK)
        self.assertEqual(tq.status(torrent.hash), QueueStatus.IDLE)

        queued = drain(tq.unpack_jobs)
        self.assertNotEqual(queued[0].torrent.hash, torrent.hash)
        tq.update([make_torrent("a", category="Unpack"), make_torrent("b", category="Unpack")])
        self.assertEqual(tq.status(torrent.hash), QueueStatus.QUEUED)

    def test_remove_deletes_entry(self):
        tq = TorrentQueue("Unpack")
        tq.update([make_torrent("a", category="Completed")])
        tq.remove("a")
        tq.remove("a")
        self.assertEqual(len(tq), 0)


if __name__ == '__main__':
    unittest.main()
