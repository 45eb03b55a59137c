"""
Change Feed for CMS.

Per-table change notifications emitted after a transaction commits. Rows
flushed during a transaction are collected from the SQLAlchemy session
(``after_flush``) and delivered to subscribers only on ``after_commit``;
a rollback discards them.

ChangeFeedPublisher bridges the feed onto a ZeroMQ PUB socket so terminals
receive ``change {"table", "op", "record"}`` messages.
"""

import logging
import threading
from collections import defaultdict
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from flask import current_app, has_app_context
from sqlalchemy import event, inspect

from cms.models import db
from src.common.ipc import MessagePublisher, MessageType


logger = logging.getLogger(__name__)

TABLES = ('terminals', 'playlists', 'playlist_slots', 'campaigns', 'media')

ChangeCallback = Callable[[str, str, Dict[str, Any]], None]

_PENDING_KEY = 'change_feed_pending'


class ChangeFeed:
    """Subscription registry for committed row changes."""

    def __init__(self, app=None):
        self._subscribers: Dict[str, List[ChangeCallback]] = defaultdict(list)
        self._lock = threading.Lock()
        if app is not None:
            self.init_app(app)

    def init_app(self, app) -> None:
        """Attach the feed to an application and hook the db session."""
        app.extensions['change_feed'] = self
        if not event.contains(db.session, 'after_flush', _collect_changes):
            event.listen(db.session, 'after_flush', _collect_changes)
            event.listen(db.session, 'after_commit', _deliver_changes)
            event.listen(db.session, 'after_soft_rollback', _discard_changes)

    def subscribe(self, table: str, callback: ChangeCallback) -> Callable[[], None]:
        """
        Register a callback for one table.

        Args:
            table: Table name (one of TABLES)
            callback: Called as ``callback(table, op, record)``

        Returns:
            Function that removes the subscription
        """
        if table not in TABLES:
            raise ValueError(f"Unknown table: {table}")

        with self._lock:
            self._subscribers[table].append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers[table]:
                    self._subscribers[table].remove(callback)

        return unsubscribe

    def subscribe_all(self, callback: ChangeCallback) -> Callable[[], None]:
        """Register a callback for every table."""
        removers = [self.subscribe(table, callback) for table in TABLES]

        def unsubscribe():
            for remove in removers:
                remove()

        return unsubscribe

    def publish(self, table: str, op: str, record: Dict[str, Any]) -> None:
        """Deliver one change to the table's subscribers."""
        with self._lock:
            callbacks = list(self._subscribers.get(table, ()))

        for callback in callbacks:
            try:
                callback(table, op, record)
            except Exception as e:
                # The transaction is already committed; one bad subscriber must not stop the rest
                logger.error(f"Change subscriber failed for {table}/{op}: {e}", exc_info=True)


def _record(obj) -> Dict[str, Any]:
    """Column values already loaded on the instance (no SQL is emitted)."""
    state = inspect(obj)
    record = {}
    # Expired instances keep their identity even when no column is loaded
    if state.identity is not None:
        for column, value in zip(state.mapper.primary_key, state.identity):
            record[column.key] = value
    for attr in state.mapper.column_attrs:
        if attr.key not in state.dict:
            continue
        value = state.dict[attr.key]
        record[attr.key] = value.isoformat() if isinstance(value, datetime) else value
    return record


def _collect_changes(session, flush_context) -> None:
    pending: Dict[Tuple[str, Any], Tuple[str, str, Dict[str, Any]]] = session.info.setdefault(_PENDING_KEY, {})

    changes = (
        [('insert', obj) for obj in session.new]
        + [('update', obj) for obj in session.dirty if session.is_modified(obj)]
        + [('delete', obj) for obj in session.deleted]
    )

    for op, obj in changes:
        table = getattr(obj, '__tablename__', None)
        if table not in TABLES:
            continue

        record = _record(obj)
        key = (table, record.get('id') or id(obj))
        previous = pending.get(key)
        if previous is not None and op == 'update':
            # insert followed by update within one transaction is still an insert
            op = previous[1]
        pending[key] = (table, op, record)


def _deliver_changes(session) -> None:
    pending = session.info.pop(_PENDING_KEY, None)
    if not pending:
        return

    feed = _current_feed()
    if feed is None:
        return

    for table, op, record in pending.values():
        feed.publish(table, op, record)


def _discard_changes(session, previous_transaction) -> None:
    session.info.pop(_PENDING_KEY, None)


def _current_feed() -> Optional[ChangeFeed]:
    if not has_app_context():
        return None
    return current_app.extensions.get('change_feed')


class ChangeFeedPublisher:
    """Forwards every committed change to terminals over ZeroMQ."""

    SERVICE_NAME = 'cms'

    def __init__(self, feed: ChangeFeed, port: int, publisher: Optional[MessagePublisher] = None):
        """
        Args:
            feed: Change feed to forward
            port: PUB socket port
            publisher: Pre-built publisher (created on ``port`` if None)
        """
        self._publisher = publisher or MessagePublisher(port, self.SERVICE_NAME)
        self._lock = threading.Lock()
        self._unsubscribe = feed.subscribe_all(self._forward)

    def _forward(self, table: str, op: str, record: Dict[str, Any]) -> None:
        # ZeroMQ sockets are not thread-safe; request threads share this one
        with self._lock:
            self._publisher.publish(MessageType.CHANGE, {
                'table': table,
                'op': op,
                'record': record,
            })

    def close(self) -> None:
        self._unsubscribe()
        with self._lock:
            self._publisher.close()
