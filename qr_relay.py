"""QR cross-device login relay.

A browser tab opens a socket and receives a pairing slot (``pcId``) plus a
short-lived token that it renders as a QR code. A second, already
authenticated device redeems the token over HTTP; the relay then pushes
``LOGIN`` to the waiting tab, which finalizes the login to obtain its own
session cookie. Tokens live in the ``PUBLIC`` cache table, either as a
pending marker ``{"pcId": ...}`` or, once redeemed, as the claim of the
user who scanned it.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Optional
from uuid import uuid4

from fastapi import WebSocketDisconnect

from cache import BaseCache
from errors import LoginTimeout, NotFound

logger = logging.getLogger(__name__)

_SEND_ERRORS = (RuntimeError, OSError, WebSocketDisconnect)


class ConnectionRegistry:
    """Live sockets addressed by pairing slot; no broadcast."""

    def __init__(self) -> None:
        self._connections: Dict[str, Any] = {}

    def __contains__(self, pc_id: str) -> bool:
        return pc_id in self._connections

    def __len__(self) -> int:
        return len(self._connections)

    def register(self, pc_id: str, conn: Any) -> None:
        self._connections[pc_id] = conn

    async def send(self, pc_id: str, message: Dict[str, Any]) -> bool:
        conn = self._connections.get(pc_id)
        if conn is None:
            logger.debug("No socket for %s, dropping %s", pc_id, message.get("type"))
            return False
        try:
            await conn.send_json(message)
        except _SEND_ERRORS as exc:
            logger.warning("Push to %s failed: %s", pc_id, exc)
            self._connections.pop(pc_id, None)
            return False
        return True

    async def remove(self, pc_id: str) -> None:
        """Forget the slot and close its socket."""
        conn = self._connections.pop(pc_id, None)
        if conn is None:
            return
        try:
            await conn.close()
        except _SEND_ERRORS as exc:
            logger.debug("Socket %s already closed: %s", pc_id, exc)

    def discard(self, pc_id: str) -> None:
        """Forget the slot without touching the socket (it is already gone)."""
        self._connections.pop(pc_id, None)


def _is_claim(entry: Any) -> bool:
    return isinstance(entry, dict) and "userId" in entry


class QrLoginRelay:
    def __init__(
        self,
        cache: BaseCache,
        registry: ConnectionRegistry,
        token_factory: Callable[[], str] = lambda: str(uuid4()),
    ) -> None:
        self.cache = cache
        self.registry = registry
        self._new_token = token_factory
        self._current_tokens: Dict[str, str] = {}

    def current_token(self, pc_id: str) -> Optional[str]:
        return self._current_tokens.get(pc_id)

    def _issue_token(self, pc_id: str) -> str:
        token = self._new_token()
        self.cache.set("PUBLIC", token, {"pcId": pc_id})
        self._current_tokens[pc_id] = token
        return token

    def _drop_token(self, pc_id: str, keep_claim: bool) -> None:
        token = self._current_tokens.pop(pc_id, None)
        if token is None:
            return
        if keep_claim and _is_claim(self.cache.get("PUBLIC", token)):
            return
        self.cache.delete("PUBLIC", token)

    async def connect(self, conn: Any, address: str) -> str:
        """Open a pairing slot for an accepted socket; last connection per address wins."""
        stale = self.cache.get("WS", address)
        if isinstance(stale, str) and stale in self.registry:
            logger.info("Evicting stale QR slot %s for %s", stale, address)
            self._drop_token(stale, keep_claim=False)
            await self.registry.remove(stale)

        pc_id = str(uuid4())
        self.cache.set("WS", address, pc_id)
        self.registry.register(pc_id, conn)
        token = self._issue_token(pc_id)
        await self.registry.send(pc_id, {"type": "INITIALIZATION", "token": token, "pcId": pc_id})
        logger.info("QR slot %s opened", pc_id)
        return pc_id

    async def handle_message(self, pc_id: str, raw: str) -> None:
        try:
            message = json.loads(raw)
        except ValueError:
            logger.debug("Ignoring non-JSON message on %s", pc_id)
            return
        if not isinstance(message, dict):
            return
        # a socket may only rotate its own token
        if message.get("type") == "newToken" and message.get("pcId") == pc_id:
            await self.rotate(pc_id)

    async def rotate(self, pc_id: str) -> Optional[str]:
        if pc_id not in self.registry:
            return None
        self._drop_token(pc_id, keep_claim=True)
        token = self._issue_token(pc_id)
        await self.registry.send(pc_id, {"type": "NEWTOKEN", "token": token})
        return token

    async def redeem(self, token: str, pc_id: str, claim: Dict[str, Any]) -> None:
        """Attach an authenticated ``claim`` to a pending token and wake the waiting tab."""
        entry = self.cache.get("PUBLIC", token)
        if not isinstance(entry, dict) or _is_claim(entry) or entry.get("pcId") != pc_id:
            await self.registry.send(pc_id, {"type": "ERROR", "message": "Login Time Out"})
            logger.info("QR token for slot %s expired or unknown", pc_id)
            raise LoginTimeout()

        self.cache.set("PUBLIC", token, {**claim, "pcId": pc_id})
        await self.registry.send(pc_id, {"type": "LOGIN", "token": token})
        logger.info("QR token for slot %s redeemed by user %s", pc_id, claim.get("userId"))

    async def finalize(self, token: str) -> Dict[str, Any]:
        """Consume a redeemed token exactly once and close its socket."""
        # a pending token stays in place with its original expiry
        claim = self.cache.pop_if("PUBLIC", token, _is_claim)
        if claim is None:
            raise NotFound("token not found")

        pc_id = claim["pcId"]
        if self._current_tokens.get(pc_id) == token:
            del self._current_tokens[pc_id]
        await self.registry.remove(pc_id)
        logger.info("QR login finalized for slot %s", pc_id)
        return claim

    def disconnect(self, pc_id: str, address: str) -> None:
        self.registry.discard(pc_id)
        self._drop_token(pc_id, keep_claim=False)
        if self.cache.get("WS", address) == pc_id:
            self.cache.delete("WS", address)
        logger.info("QR slot %s closed", pc_id)
