"""Subscriber side of the realtime channel.

``MatchSubscriber`` is the explicit session object a viewer (or a referee
console) holds: it owns the Socket.IO connection handle and a cache of the
last authoritative match state. The cache is never trusted across a
disconnect; every (re)connect rebuilds it from a full fetch.
"""
from copy import deepcopy
import logging
from typing import Callable, Optional

import socketio
from socketio.exceptions import SocketIOError

logger = logging.getLogger(__name__)

SPECTATOR_NAMESPACE = '/spectator'
DEFAULT_RECONNECT_BACKOFF_SEC = 3.0


class MatchSubscriber:

    def __init__(
        self,
        url: str,
        match_id: int,
        namespace: str = SPECTATOR_NAMESPACE,
        reconnect_backoff: float = DEFAULT_RECONNECT_BACKOFF_SEC,
        fetch_timeout: float = 10.0,
        on_state: Optional[Callable[[dict], None]] = None,
        client=None,
    ):
        self.url = url
        self.match_id = match_id
        self.namespace = namespace
        self.fetch_timeout = fetch_timeout
        self.on_state = on_state
        self.state: Optional[dict] = None
        self.version: Optional[int] = None
        self.connected = False
        self._speculative: Optional[dict] = None
        self._closed = False
        # Fixed backoff, unlimited attempts; only close() stops reconnecting
        self.client = client or socketio.Client(
            reconnection=True,
            reconnection_attempts=0,
            reconnection_delay=reconnect_backoff,
            reconnection_delay_max=reconnect_backoff,
            randomization_factor=0,
        )
        self.client.on('connect', self._on_connect, namespace=namespace)
        self.client.on('disconnect', self._on_disconnect, namespace=namespace)
        self.client.on('notification', self._on_notification, namespace=namespace)

    # ---- lifecycle ----

    def start(self, **connect_kwargs):
        """Connect, retrying a refused first attempt with the reconnect backoff."""
        self._closed = False
        connect_kwargs.setdefault('retry', True)
        self.client.connect(self.url, namespaces=[self.namespace], **connect_kwargs)

    def close(self):
        """Normal closure: no reconnect attempts follow."""
        self._closed = True
        self.connected = False
        self.client.disconnect()

    def _on_connect(self):
        self.connected = True
        logger.info(f"[subscriber-connect] match={self.match_id} namespace={self.namespace}")
        self.client.emit('join_match', {'match_id': self.match_id}, namespace=self.namespace)
        # call() waits for an ack, so it must not run on the receive loop
        self.client.start_background_task(self.resync)

    def _on_disconnect(self, *args):
        self.connected = False
        if not self._closed:
            logger.warning(f"[subscriber-disconnect] match={self.match_id} reconnecting")

    # ---- state ----

    @property
    def current(self) -> Optional[dict]:
        """Speculative overlay if one is pending, else the authoritative cache."""
        return self._speculative if self._speculative is not None else self.state

    def is_stale(self, version) -> bool:
        return self.version is None or version is None or version > self.version

    def resync(self) -> Optional[dict]:
        try:
            data = self.client.call(
                'get_state',
                {'match_id': self.match_id},
                namespace=self.namespace,
                timeout=self.fetch_timeout,
            )
        except SocketIOError as exc:
            # State stays stale until the next notification or reconnect
            logger.warning(f"[subscriber-resync-failed] match={self.match_id} error={exc}")
            return None
        return self._adopt(data)

    def _adopt(self, data) -> Optional[dict]:
        if not isinstance(data, dict) or 'error' in data:
            logger.warning(f"[subscriber-bad-state] match={self.match_id} payload={data}")
            return None
        version = data.get('version')
        if self.version is not None and version is not None and version < self.version:
            # Late delivery of an older snapshot
            return self.state
        self.state = data
        self.version = version
        self._speculative = None
        if self.on_state is not None:
            self.on_state(data)
        return data

    def _on_notification(self, payload):
        if not isinstance(payload, dict):
            return
        kind = payload.get('type')
        if kind == 'error':
            logger.warning(f"[subscriber-error] match={self.match_id} message={payload.get('message')}")
            return
        if isinstance(payload.get('data'), dict) and kind in ('match_state', 'match_update'):
            self._adopt(payload['data'])
            return
        if self.is_stale(payload.get('version')):
            self.client.start_background_task(self.resync)

    def apply_speculative(self, mutate: Callable[[dict], None]) -> dict:
        """Apply a local guess on top of the cache until the next fetch replaces it."""
        base = deepcopy(self.current or {})
        mutate(base)
        self._speculative = base
        return base
