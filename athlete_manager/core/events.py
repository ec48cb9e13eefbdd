"""
Lightweight event system for hooks.

Two kinds of subscribers:
- best-effort (default): a failing handler is logged and skipped
- strict: emit(..., strict=True) lets the first handler error propagate,
  so the caller's transaction can be aborted (identity provisioning)
"""
import logging
from typing import Callable, Dict, List

logger = logging.getLogger(__name__)

# Event registry: event_name -> list of handlers
_event_handlers: Dict[str, List[Callable]] = {}


def subscribe(event_name: str, handler: Callable) -> Callable:
    """
    Subscribe a handler function to an event.

    Returns the handler so this can be used as a plain call or a decorator body.
    """
    handlers = _event_handlers.setdefault(event_name, [])
    if handler not in handlers:
        handlers.append(handler)
        logger.debug(f"Subscribed handler to event: {event_name}")
    return handler


def unsubscribe(event_name: str, handler: Callable) -> None:
    handlers = _event_handlers.get(event_name, [])
    if handler in handlers:
        handlers.remove(handler)


def emit(event_name: str, strict: bool = False, **kwargs) -> None:
    """
    Emit an event, calling all subscribed handlers in subscription order.

    Args:
        event_name: Name of the event
        strict: re-raise handler errors instead of logging them
        **kwargs: Event data passed to handlers
    """
    for handler in list(_event_handlers.get(event_name, [])):
        if strict:
            handler(**kwargs)
            continue
        try:
            handler(**kwargs)
        except Exception as e:
            logger.error(f"Error in event handler for {event_name}: {e}", exc_info=True)


# Common event names
EVENT_IDENTITY_CREATED = 'identity.created'
EVENT_RECORD_CREATED = 'record.created'
EVENT_RECORD_UPDATED = 'record.updated'
EVENT_RECORD_DELETED = 'record.deleted'
