"""Acting-user state shared by every sync session of one client connection."""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    user_id: str
    email: str = ""


AuthCallback = Callable[[Optional[Identity]], None]


class AuthState:
    """
    Holds the signed-in identity and notifies listeners when it changes.

    ``None`` means signed out. Listeners are called immediately with the
    current value when they register.
    """

    def __init__(self, identity: Optional[Identity] = None):
        self._identity = identity
        self._listeners: List[AuthCallback] = []

    @property
    def identity(self) -> Optional[Identity]:
        return self._identity

    @property
    def user_id(self) -> Optional[str]:
        return self._identity.user_id if self._identity else None

    def on_auth_changed(self, callback: AuthCallback) -> Callable[[], None]:
        self._listeners.append(callback)
        callback(self._identity)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def sign_in(self, user_id, email: str = ""):
        self._set(Identity(user_id=str(user_id), email=email or ""))

    def sign_out(self):
        self._set(None)

    def _set(self, identity: Optional[Identity]):
        if identity == self._identity:
            return
        self._identity = identity
        logger.debug("Acting user changed to %s", identity.user_id if identity else None)
        for callback in list(self._listeners):
            callback(identity)
