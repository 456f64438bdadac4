from flask import current_app

REFEREE_NAMESPACE = '/referee'
SPECTATOR_NAMESPACE = '/spectator'
NOTIFICATION_EVENT = 'notification'

# Referee notification type -> what spectators get for it. Spectators either
# receive the full match (match_update) or a refetch trigger carrying only
# the new version.
_SPECTATOR_KIND = {
    'frame_started': 'frame_update',
    'frame_ended': 'frame_update',
    'ball_groups_set': 'frame_update',
    'event_created': 'event_created',
}


def match_room(match_id) -> str:
    return f"match:{match_id}"


class Broadcaster:
    """Fan-out of change notifications to every subscriber of a match.

    Emits go through Socket.IO rooms, so a slow or vanished client never
    blocks the writer. A failed emit is logged and not retried; subscribers
    recover by reconnecting and refetching.
    """

    def __init__(self, socketio):
        self.socketio = socketio

    def _emit(self, match_id, payload, namespace):
        try:
            self.socketio.emit(NOTIFICATION_EVENT, payload, to=match_room(match_id), namespace=namespace)
        except Exception as exc:
            current_app.logger.warning(
                f"[broadcast-failed] match={match_id} namespace={namespace} type={payload.get('type')} error={exc}"
            )
            return False
        return True

    def publish(self, match_id, notification_type, data=None, version=None, view=None):
        """Announce one accepted mutation on both channels."""
        payload = {'type': notification_type, 'version': version}
        if data is not None:
            payload['data'] = data
        self._emit(match_id, payload, REFEREE_NAMESPACE)

        kind = _SPECTATOR_KIND.get(notification_type, 'match_update')
        if kind == 'match_update' and view is not None:
            self._emit(match_id, {'type': kind, 'data': view, 'version': version}, SPECTATOR_NAMESPACE)
        else:
            self._emit(match_id, {'type': kind, 'version': version}, SPECTATOR_NAMESPACE)
