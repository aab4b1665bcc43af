"""
Presence registry: which identities are online, and on which session.

Entries are weak references, so the registry never keeps a closed
session alive. Removal is guarded by session instance so a late
disconnect of an old connection cannot evict a newer one.
"""

from __future__ import annotations

import logging
import weakref
from typing import List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from linechat.session import Session


log = logging.getLogger(__name__)


class AlreadyOnlineError(RuntimeError):
    """Another live session already holds this identity."""


class PresenceRegistry:
    """Maps logged-in identity -> Session. Mutated only from the event loop."""

    def __init__(self):
        self._online: "weakref.WeakValueDictionary[str, Session]" = weakref.WeakValueDictionary()

    def register(self, identity: str, session: "Session") -> None:
        """Mark `identity` online on `session`. Raises AlreadyOnlineError if held elsewhere."""
        current = self._online.get(identity)
        if current is not None and current is not session:
            raise AlreadyOnlineError(identity)
        self._online[identity] = session
        log.info("[+] %s is online", identity)

    def deregister(self, identity: str, session: "Session") -> bool:
        """Remove `identity` only if it still points at `session`. Returns True if removed."""
        current = self._online.get(identity)
        if current is None or current is not session:
            log.debug("Ignored stale deregister for %s", identity)
            return False
        del self._online[identity]
        log.info("[+] %s is offline", identity)
        return True

    def lookup(self, identity: str) -> Optional["Session"]:
        return self._online.get(identity)

    def list(self, excluding: Optional[str] = None) -> List[str]:
        """Online identities in sorted order, without `excluding`."""
        return sorted(login for login in list(self._online.keys()) if login != excluding)

    def __contains__(self, identity: str) -> bool:
        return self._online.get(identity) is not None

    def __len__(self) -> int:
        return len(self._online)
