"""
Campaign Gate Session

Explicit caller context passed into every request handler, and a
caller-owned registry for actor-change notifications.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional
from uuid import uuid4

from .models import Actor

logger = logging.getLogger(__name__)

ActorListener = Callable[[Optional[Actor]], None]


@dataclass(frozen=True)
class Session:
    """Authenticated request context."""
    user_id: Optional[str]
    request_id: str = field(default_factory=lambda: str(uuid4()))

    @property
    def authenticated(self) -> bool:
        return bool(self.user_id)

    @classmethod
    def anonymous(cls) -> "Session":
        return cls(user_id=None)


class SessionEvents:
    """
    Callback registry for actor changes.

    Owned by whoever manages sign-in state; nothing here is module-global.
    """

    def __init__(self):
        self._listeners: List[ActorListener] = []
        self._actor: Optional[Actor] = None

    @property
    def actor(self) -> Optional[Actor]:
        return self._actor

    def subscribe(self, listener: ActorListener) -> Callable[[], None]:
        """
        Register a listener.

        Returns:
            Callable that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, actor: Optional[Actor]) -> None:
        """Record the new actor and notify every listener."""
        self._actor = actor
        for listener in list(self._listeners):
            try:
                listener(actor)
            except Exception as e:
                logger.error(f"Session listener failed: {e}", exc_info=True)
