"""Shared room records for peer-authoritative play, kept in Redis.

Each room is one JSON document under ``<prefix>room:<code>``. Every write
publishes the room code on ``<prefix>room-events:<code>``; subscribers
re-read the document when the notice arrives, so listeners always see a
whole record rather than a diff.
"""
import copy
import json
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import redis

from chain_reaction.models import RoomStatus

logger = logging.getLogger(__name__)

Listener = Callable[[Optional[Dict[str, Any]]], None]


def apply_patch(record: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
    """Apply a multi-path update in place.

    ``'a/b'`` addresses a nested key and a ``None`` value deletes it.
    """
    for path, value in patch.items():
        *parents, leaf = path.split('/')
        node = record
        for key in parents:
            child = node.get(key)
            if not isinstance(child, dict):
                if value is None:
                    break
                child = node[key] = {}
            node = child
        else:
            if value is None:
                node.pop(leaf, None)
            else:
                node[leaf] = copy.deepcopy(value)
    return record


def _text(value) -> str:
    return value.decode() if isinstance(value, bytes) else value


class RedisSharedStore:
    """Room records and change notices over a Redis connection.

    Listeners are called from ``pump()``, either by the caller or by the
    background thread started with ``start()``.
    """

    def __init__(self, client: redis.Redis, prefix: str = 'chain-reaction:',
                 clock: Callable[[], float] = time.time):
        self.client = client
        self.prefix = prefix
        self.clock = clock
        self._pubsub = client.pubsub()
        self._listeners: Dict[str, List[Listener]] = {}
        self._lock = threading.RLock()
        self._stop: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def from_url(cls, url: str, **kwargs) -> 'RedisSharedStore':
        return cls(redis.Redis.from_url(url, decode_responses=True), **kwargs)

    def _key(self, code: str) -> str:
        return f"{self.prefix}room:{code}"

    def _channel(self, code: str) -> str:
        return f"{self.prefix}room-events:{code}"

    def now(self) -> float:
        return self.clock()

    # ---- Records ----

    def get(self, code: str) -> Optional[Dict[str, Any]]:
        raw = self.client.get(self._key(code))
        return json.loads(raw) if raw is not None else None

    def set(self, code: str, data: Optional[Dict[str, Any]]) -> None:
        if data is None:
            self.client.delete(self._key(code))
        else:
            self.client.set(self._key(code), json.dumps(data))
        self._publish(code)

    def update(self, code: str, patch: Dict[str, Any]) -> None:
        key = self._key(code)

        def _apply(pipe):
            raw = pipe.get(key)
            record = json.loads(raw) if raw is not None else {}
            apply_patch(record, patch)
            pipe.multi()
            pipe.set(key, json.dumps(record))

        # Retries if another peer writes the room between read and commit
        self.client.transaction(_apply, key)
        self._publish(code)

    def delete(self, code: str) -> None:
        self.set(code, None)

    def waiting_rooms(self, limit: int = 10) -> List[Tuple[str, Dict[str, Any]]]:
        prefix = self._key('')
        found = []
        for key in self.client.scan_iter(match=f"{prefix}*"):
            raw = self.client.get(key)
            if raw is None:
                continue
            data = json.loads(raw)
            if data.get('status') == RoomStatus.WAITING.value:
                found.append((_text(key)[len(prefix):], data))
        found.sort(key=lambda item: item[1].get('createdAt') or 0)
        return found[:limit]

    def _publish(self, code: str) -> None:
        self.client.publish(self._channel(code), code)

    # ---- Change notices ----

    def subscribe(self, code: str, listener: Listener) -> Callable[[], None]:
        with self._lock:
            listeners = self._listeners.setdefault(code, [])
            if not listeners:
                self._pubsub.subscribe(self._channel(code))
            listeners.append(listener)
        listener(self.get(code))

        def unsubscribe():
            with self._lock:
                listeners = self._listeners.get(code, [])
                if listener in listeners:
                    listeners.remove(listener)
                if not listeners and code in self._listeners:
                    del self._listeners[code]
                    self._pubsub.unsubscribe(self._channel(code))
        return unsubscribe

    def pump(self) -> int:
        """Deliver every pending change notice. Returns how many were delivered."""
        delivered = 0
        while True:
            with self._lock:
                if not self._pubsub.subscribed:
                    return delivered
                message = self._pubsub.get_message(timeout=0)
            if message is None:
                return delivered
            if message.get('type') != 'message':
                continue
            code = _text(message['data'])
            with self._lock:
                listeners = list(self._listeners.get(code, []))
            if not listeners:
                continue
            snapshot = self.get(code)
            for listener in listeners:
                listener(copy.deepcopy(snapshot))
            delivered += 1

    def start(self, poll_interval: float = 0.05) -> None:
        """Deliver notices from a daemon thread until ``close()``."""
        if self._thread is not None:
            return
        self._stop = threading.Event()

        def _run():
            while not self._stop.is_set():
                try:
                    if not self.pump():
                        self._stop.wait(poll_interval)
                except redis.RedisError:
                    logger.exception('[store-listen-error] change notice delivery failed')
                    self._stop.wait(poll_interval)

        self._thread = threading.Thread(target=_run, name='shared-store-listener', daemon=True)
        self._thread.start()
        logger.info(f"[store-listen-start] prefix={self.prefix}")

    def close(self) -> None:
        if self._stop is not None:
            self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=1.0)
            self._thread = None
        with self._lock:
            self._pubsub.close()
