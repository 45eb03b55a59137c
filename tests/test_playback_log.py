"""
Tests for the proof-of-play buffer and its upload thread.
"""

import threading

import pytest

from src.common.cms_client import CMSClientError
from src.player.playback_log import PlaybackLogStore, PlaybackReporter


def entry(media_id, slot_index=2):
    return {
        'media_id': media_id,
        'slot_index': slot_index,
        'status': 'played',
        'played_at': '2024-01-10T12:00:00+00:00',
    }


@pytest.fixture
def store(tmp_path):
    store = PlaybackLogStore(str(tmp_path / "playback.db"))
    yield store
    store.close()


@pytest.fixture
def terminal(cms):
    cms.terminals['term-1'] = {'id': 'term-1'}
    return cms.terminals['term-1']


class TestStore:
    """Local buffer."""

    def test_records_in_order(self, store):
        store.record(entry('m-0'))
        store.record(entry('m-1'))

        pending = store.pending()

        assert [e['media_id'] for _, e in pending] == ['m-0', 'm-1']
        assert store.count() == 2

    def test_survives_reopen(self, store, tmp_path):
        store.record(entry('m-0'))

        reopened = PlaybackLogStore(str(tmp_path / "playback.db"))
        try:
            assert reopened.count() == 1
        finally:
            reopened.close()

    def test_cap_drops_oldest(self, tmp_path):
        store = PlaybackLogStore(str(tmp_path / "small.db"), max_size=3)
        for n in range(5):
            store.record(entry(f'm-{n}'))

        assert [e['media_id'] for _, e in store.pending()] == ['m-2', 'm-3', 'm-4']
        store.close()

    def test_remove(self, store):
        store.record(entry('m-0'))
        store.record(entry('m-1'))
        first_id = store.pending()[0][0]

        store.remove([first_id])
        store.remove([])

        assert [e['media_id'] for _, e in store.pending()] == ['m-1']

    def test_pending_limit(self, store):
        for n in range(4):
            store.record(entry(f'm-{n}'))

        assert len(store.pending(limit=2)) == 2


class TestFlush:
    """Single upload."""

    def test_uploads_and_clears(self, cms, client, store, terminal):
        store.record(entry('m-0'))
        store.record(entry('m-1'))
        reporter = PlaybackReporter(client, store, 'term-1')

        assert reporter.flush() == 2

        assert [e['media_id'] for e in cms.playback['term-1']] == ['m-0', 'm-1']
        assert store.count() == 0
        assert reporter.get_status()['uploaded_total'] == 2

    def test_empty_buffer_skips_request(self, client, store, terminal):
        assert PlaybackReporter(client, store, 'term-1').flush() == 0
        client.report_playback.assert_not_called()

    def test_batch_size(self, cms, client, store, terminal):
        for n in range(3):
            store.record(entry(f'm-{n}'))
        reporter = PlaybackReporter(client, store, 'term-1', batch_size=2)

        assert reporter.flush() == 2
        assert reporter.flush() == 1
        assert len(cms.playback['term-1']) == 3

    def test_cms_failure_keeps_records(self, client, store, terminal):
        client.report_playback.side_effect = CMSClientError("down")
        store.record(entry('m-0'))
        reporter = PlaybackReporter(client, store, 'term-1')

        assert reporter.flush() == 0

        assert store.count() == 1
        assert reporter.get_status()['consecutive_failures'] == 1

    def test_unknown_terminal_keeps_records(self, client, store):
        store.record(entry('m-0'))

        assert PlaybackReporter(client, store, 'term-x').flush() == 0
        assert store.count() == 1


class TestReporterThread:
    """Background loop."""

    def test_trigger_uploads_immediately(self, cms, client, store, terminal):
        uploaded = threading.Event()
        upload = client.report_playback.side_effect

        def report(terminal_id, entries):
            result = upload(terminal_id, entries)
            uploaded.set()
            return result

        client.report_playback.side_effect = report
        store.record(entry('m-0'))
        reporter = PlaybackReporter(client, store, 'term-1', interval=3600)

        reporter.start()
        try:
            reporter.trigger()
            assert uploaded.wait(timeout=2)
        finally:
            reporter.stop()

        assert not reporter.is_running()
        assert store.count() == 0

    def test_stop_uploads_remaining(self, cms, client, store, terminal):
        reporter = PlaybackReporter(client, store, 'term-1', interval=3600)
        reporter.start()
        store.record(entry('m-0'))

        reporter.stop()

        assert [e['media_id'] for e in cms.playback['term-1']] == ['m-0']
