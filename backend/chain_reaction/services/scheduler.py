from typing import Optional

from chain_reaction import socketio


def run_sweep(app, now: Optional[float] = None) -> int:
    """Expire idle rooms once, notifying occupants. Returns messages sent."""
    from chain_reaction.socketio_events import dispatch

    coordinator = app.extensions['sessions']
    messages = coordinator.sweep_stale(now)
    if messages:
        dispatch(messages, namespace=app.config.get('SOCKETIO_NAMESPACE', '/ws'))
        app.logger.info(f"[sweep] notified={len(messages)} rooms_left={len(coordinator.rooms)}")
    return len(messages)


def start_room_sweeper(app) -> None:
    """Start the periodic stale-room sweep for this app, once.

    - No-ops in TESTING mode unless ENABLE_SWEEPER_IN_TESTS is set
    - Runs as a Socket.IO background task so it cooperates with the async mode
    """
    if app.config.get('TESTING') and not app.config.get('ENABLE_SWEEPER_IN_TESTS'):
        return
    if app.extensions.get('room_sweeper'):
        return
    interval = max(1, int(app.config.get('ROOM_SWEEP_INTERVAL_SEC', 60)))

    def _worker():
        while True:
            socketio.sleep(interval)
            try:
                run_sweep(app)
            except Exception:
                app.logger.exception('[sweep-error] stale room sweep failed')

    app.extensions['room_sweeper'] = socketio.start_background_task(_worker)
    app.logger.info(f"[sweep-start] interval={interval}s stale_after={app.config.get('ROOM_STALE_TIMEOUT_SEC')}s")
