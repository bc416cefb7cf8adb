"""Session hub — WebSocket connection registry and per-user fan-out.

Learn: Clients connect to any path under /ws and authenticate in-band,
after the upgrade, by sending:

    {"type": "authenticate", "payload": "<access token>"}

Lifecycle of one connection:
1. Open/unauthenticated — accepted, username is None
2. Open/authenticated — token verified (expiry ignored), registered
   under the token subject; a failed attempt answers with an error
   event and leaves the socket open for another try
3. Closed — removed from the registry; an emptied user entry is dropped

The registry maps username → {connection_id: Connection}. One user may
hold many connections (one per browser tab). deliver() sends to a
snapshot of that set, so a close during fan-out never skips or repeats
a send to the other connections.

Everything runs on the event loop, so the registry needs no lock.
"""

import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import structlog
from starlette.websockets import WebSocket, WebSocketState

from herpkeeper.auth.jwt import TokenError, TokenIdentity, verify_token_ignore_expiration
from herpkeeper.config import settings
from herpkeeper.events.types import (
    AUTH_FAILED,
    AUTH_SUCCESS,
    PROFILE_UPDATED,
    WS_AUTHENTICATE,
    WS_ERROR,
)

logger = structlog.get_logger()

CredentialVerifier = Callable[[str], TokenIdentity]


@dataclass(eq=False)
class Connection:
    """One live WebSocket session.

    `hub` is a back-reference to the owning hub, never an ownership edge:
    the connection lives exactly as long as its transport.
    """

    websocket: WebSocket
    hub: "SessionHub"
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    username: Optional[str] = None

    @property
    def authenticated(self) -> bool:
        return self.username is not None

    async def send_event(self, event_type: str, payload: Any) -> None:
        await self.websocket.send_text(
            json.dumps({"type": event_type, "payload": payload}, default=str)
        )

    async def close(self, code: int = 1000) -> None:
        if self.websocket.client_state == WebSocketState.CONNECTED:
            await self.websocket.close(code=code)


class SessionHub:
    """Owns every live connection and the username → connections registry."""

    def __init__(
        self,
        verifier: Optional[CredentialVerifier] = None,
        path_prefix: Optional[str] = None,
    ):
        self.verifier = verifier or verify_token_ignore_expiration
        self.path_prefix = path_prefix or settings.ws_path_prefix
        self.registry: dict[str, dict[str, Connection]] = {}
        self.connections: dict[str, Connection] = {}
        self.started = False

    # ─── Lifecycle ──────────────────────────────────────

    def start(self) -> None:
        logger.debug("hub.start")
        if self.started:
            return
        self.started = True
        logger.info("hub.started", path_prefix=self.path_prefix)

    async def stop(self) -> None:
        """Stop accepting upgrades and close every live connection."""
        logger.debug("hub.stop")
        if not self.started:
            return
        self.started = False
        for connection in list(self.connections.values()):
            try:
                await connection.close(code=1001)
            except Exception as e:
                logger.debug("hub.close_failed", connection_id=connection.id, error=str(e))
            self.handle_close(connection)
        logger.info("hub.stopped")

    # ─── Upgrade + session loop ─────────────────────────

    def accept_upgrade(self, path: str) -> bool:
        """Whether an upgrade request on `path` should be completed."""
        if not self.started:
            logger.warning("hub.upgrade_rejected", path=path, reason="not started")
            return False
        if not path.startswith(self.path_prefix):
            logger.warning("hub.upgrade_rejected", path=path, reason="invalid path")
            return False
        return True

    async def handle(self, websocket: WebSocket) -> None:
        """Run one session from accept to close."""
        await websocket.accept()
        connection = Connection(websocket=websocket, hub=self)
        self.connections[connection.id] = connection
        logger.debug("hub.connection_opened", connection_id=connection.id)

        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                raw = message.get("text")
                if raw is None and message.get("bytes") is not None:
                    raw = message["bytes"].decode("utf-8", errors="replace")
                await self.handle_event(connection, raw)
        except Exception as e:
            # Abrupt transport failures are treated like a close
            logger.warning(
                "hub.transport_error", connection_id=connection.id, error=str(e)
            )
        finally:
            self.handle_close(connection)

    async def handle_event(self, connection: Connection, raw: Optional[str]) -> None:
        """Decode one in-band client message and dispatch it by type."""
        logger.debug("hub.event_received", connection_id=connection.id)
        try:
            event = json.loads(raw) if raw is not None else None
        except json.JSONDecodeError as e:
            logger.warning("hub.not_an_event", connection_id=connection.id, error=str(e))
            return
        if not isinstance(event, dict):
            logger.warning("hub.not_an_event", connection_id=connection.id)
            return

        event_type = event.get("type")
        if event_type == WS_AUTHENTICATE:
            await self.authenticate(connection, event.get("payload"))
        else:
            logger.debug(
                "hub.event_ignored", connection_id=connection.id, type=event_type
            )

    def handle_close(self, connection: Connection) -> None:
        """Prune a closed connection from the hub."""
        logger.debug(
            "hub.connection_closed",
            connection_id=connection.id,
            username=connection.username,
        )
        self.connections.pop(connection.id, None)
        if connection.username is not None:
            self._unregister(connection)

    # ─── Authentication ─────────────────────────────────

    async def authenticate(self, connection: Connection, credential: Any) -> bool:
        """Bind the connection to the credential's subject.

        The connection stays open on failure so the client can retry.
        """
        logger.debug("hub.authenticate", connection_id=connection.id)
        try:
            identity = self.verifier(credential)
        except TokenError as e:
            logger.warning(
                "hub.authenticate_failed", connection_id=connection.id, error=str(e)
            )
            await connection.send_event(WS_ERROR, AUTH_FAILED)
            return False

        self.register(connection, identity.subject)
        logger.debug(
            "hub.authenticated",
            connection_id=connection.id,
            username=identity.subject,
        )
        await connection.send_event(WS_AUTHENTICATE, AUTH_SUCCESS)
        return True

    def register(self, connection: Connection, username: str) -> None:
        """Index a connection under `username`.

        Re-authenticating as another user moves the connection; as the same
        user it is a no-op.
        """
        if connection.username is not None and connection.username != username:
            logger.info(
                "hub.reauthenticated",
                connection_id=connection.id,
                old_username=connection.username,
                username=username,
            )
            self._unregister(connection)
        connection.username = username
        self.registry.setdefault(username, {})[connection.id] = connection

    def _unregister(self, connection: Connection) -> None:
        sessions = self.registry.get(connection.username)
        if sessions is None:
            return
        sessions.pop(connection.id, None)
        if not sessions:
            del self.registry[connection.username]

    # ─── Fan-out ────────────────────────────────────────

    def sessions_for(self, username: str) -> list[Connection]:
        return list(self.registry.get(username, {}).values())

    async def deliver(
        self,
        username: str,
        payload: Any,
        event_type: str = PROFILE_UPDATED,
    ) -> int:
        """Send an event to every connection of `username`.

        Returns how many connections it was sent to. An offline user is
        not an error.
        """
        targets = self.sessions_for(username)
        logger.debug("hub.deliver", username=username, connections=len(targets))

        sent = 0
        for connection in targets:
            # Closed while an earlier send was suspended
            if connection.id not in self.registry.get(username, {}):
                continue
            try:
                await connection.send_event(event_type, payload)
                sent += 1
            except Exception as e:
                logger.warning(
                    "hub.send_failed",
                    connection_id=connection.id,
                    username=username,
                    error=str(e),
                )
        return sent

    def stats(self) -> dict[str, int]:
        return {
            "connections": len(self.connections),
            "users": len(self.registry),
        }
