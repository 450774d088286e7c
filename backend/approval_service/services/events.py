"""In-process hooks for approval state transitions.

Notification dispatch lives outside this service: it subscribes here with
``on(event, handler)``. Events fire after the transaction commits, and a
failing handler is logged without affecting the caller or other handlers.

Events:
    approval_session.started     payload: session snapshot
    approval_session.delegated   payload: session snapshot + level/delegate_to
    approval_session.decided     payload: session snapshot + level/outcome
    approval_session.approved    payload: session snapshot
    approval_session.rejected    payload: session snapshot
    approval_session.cancelled   payload: session snapshot
"""
import logging
from collections import defaultdict
from collections.abc import Callable

logger = logging.getLogger(__name__)

Handler = Callable[[dict], None]

_registry: dict[str, list[Handler]] = defaultdict(list)


def on(event: str, handler: Handler) -> None:
    _registry[event].append(handler)


def off(event: str, handler: Handler) -> None:
    handlers = _registry.get(event)
    if handlers and handler in handlers:
        handlers.remove(handler)


def clear(event: str | None = None) -> None:
    if event is None:
        _registry.clear()
    else:
        _registry.pop(event, None)


def fire(event: str, payload: dict) -> None:
    for handler in list(_registry.get(event, ())):
        try:
            handler(payload)
        except Exception:
            logger.exception("Hook handler %r failed for event %s", handler, event)
