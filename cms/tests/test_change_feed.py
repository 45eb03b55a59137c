"""
Tests for the committed-change feed and its ZeroMQ publisher.
"""

from unittest.mock import MagicMock

import pytest

from cms.models import Media, Terminal
from cms.services.change_feed import ChangeFeedPublisher, TABLES
from src.common.ipc import MessageType


@pytest.fixture
def feed(app):
    return app.extensions['change_feed']


@pytest.fixture
def recorded(feed):
    """Every change delivered on any table, as (table, op, record) tuples."""
    events = []
    unsubscribe = feed.subscribe_all(lambda table, op, record: events.append((table, op, record)))
    yield events
    unsubscribe()


class TestChangeFeed:
    """Tests for ChangeFeed delivery semantics."""

    def test_insert_delivered_after_commit(self, db_session, recorded):
        db_session.add(Terminal(id='term-9', name='Atrium'))
        db_session.flush()
        assert recorded == []

        db_session.commit()

        assert len(recorded) == 1
        table, op, record = recorded[0]
        assert (table, op) == ('terminals', 'insert')
        assert record['id'] == 'term-9'
        assert record['name'] == 'Atrium'

    def test_update_delivered(self, db_session, sample_terminal, recorded):
        sample_terminal.power_mode = 'off'
        db_session.commit()

        assert [(t, op) for t, op, _ in recorded] == [('terminals', 'update')]
        assert recorded[0][2]['power_mode'] == 'off'

    def test_delete_delivered(self, db_session, sample_media, recorded):
        db_session.delete(db_session.get(Media, sample_media.id))
        db_session.commit()

        assert [(t, op) for t, op, _ in recorded] == [('media', 'delete')]

    def test_insert_then_update_is_one_insert(self, db_session, recorded):
        terminal = Terminal(id='term-9', name='Atrium')
        db_session.add(terminal)
        db_session.flush()
        terminal.name = 'Atrium East'
        db_session.commit()

        assert [(t, op) for t, op, _ in recorded] == [('terminals', 'insert')]
        assert recorded[0][2]['name'] == 'Atrium East'

    def test_rollback_discards(self, db_session, recorded):
        db_session.add(Terminal(id='term-9', name='Atrium'))
        db_session.flush()
        db_session.rollback()
        db_session.commit()

        assert recorded == []

    def test_table_filter(self, db_session, feed, sample_terminal):
        seen = []
        unsubscribe = feed.subscribe('media', lambda *args: seen.append(args))
        try:
            sample_terminal.name = 'Renamed'
            db_session.add(Media(name='clip.mp4'))
            db_session.commit()
        finally:
            unsubscribe()

        assert [(t, op) for t, op, _ in seen] == [('media', 'insert')]

    def test_unsubscribe(self, db_session, feed):
        seen = []
        unsubscribe = feed.subscribe('terminals', lambda *args: seen.append(args))
        unsubscribe()

        db_session.add(Terminal(id='term-9', name='Atrium'))
        db_session.commit()

        assert seen == []

    def test_unknown_table(self, feed):
        with pytest.raises(ValueError):
            feed.subscribe('users', lambda *args: None)

    def test_failing_subscriber_does_not_block_others(self, db_session, feed, recorded):
        unsubscribe = feed.subscribe('terminals', MagicMock(side_effect=RuntimeError('boom')))
        try:
            db_session.add(Terminal(id='term-9', name='Atrium'))
            db_session.commit()
        finally:
            unsubscribe()

        assert len(recorded) == 1

    def test_known_tables(self):
        assert set(TABLES) == {'terminals', 'playlists', 'playlist_slots', 'campaigns', 'media'}


class TestChangeFeedPublisher:
    """Tests for forwarding changes over ZeroMQ."""

    def test_forwards_change_messages(self, db_session, feed):
        zmq_publisher = MagicMock()
        publisher = ChangeFeedPublisher(feed, 5560, publisher=zmq_publisher)

        try:
            db_session.add(Terminal(id='term-9', name='Atrium'))
            db_session.commit()
        finally:
            publisher.close()

        zmq_publisher.publish.assert_called_once()
        msg_type, data = zmq_publisher.publish.call_args[0]
        assert msg_type is MessageType.CHANGE
        assert data['table'] == 'terminals'
        assert data['op'] == 'insert'
        assert data['record']['id'] == 'term-9'
        zmq_publisher.close.assert_called_once()

    def test_close_stops_forwarding(self, db_session, feed):
        zmq_publisher = MagicMock()
        ChangeFeedPublisher(feed, 5560, publisher=zmq_publisher).close()

        db_session.add(Terminal(id='term-9', name='Atrium'))
        db_session.commit()

        zmq_publisher.publish.assert_not_called()

    def test_disabled_in_testing(self, app):
        assert 'change_feed_publisher' not in app.extensions
