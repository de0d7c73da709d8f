"""
Realtime WebSocket Endpoint.

Drives one connection from upgrade to close: admission through the
lifecycle coordinator, then a receive loop that hands every frame to the
event router. Whatever ends the loop, the coordinator's close path runs.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from fastapi import WebSocket, WebSocketDisconnect

from lovculator_shared.config.logging import get_logger
from lovculator_shared.config.settings import settings
from lovculator_ws.components.core.constants import WSCloseCode

if TYPE_CHECKING:
    from lovculator_ws.components.core.context import Connection
    from lovculator_ws.connection_manager import ConnectionManager

logger = get_logger(__name__)


class RealtimeEndpoint:
    """
    Per-connection handler for ``/ws``.

    Usage:
        endpoint = RealtimeEndpoint(websocket, manager)
        await endpoint.run()
    """

    def __init__(
        self,
        websocket: WebSocket,
        manager: "ConnectionManager",
        receive_timeout: float | None = None,
        max_message_size: int | None = None,
    ):
        """
        Args:
            websocket: The WebSocket connection.
            manager: ConnectionManager instance.
            receive_timeout: Seconds between closed-state checks while idle
                (defaults to the heartbeat interval).
            max_message_size: Largest accepted inbound frame, in characters
                for text frames and bytes for binary ones.
        """
        self.websocket = websocket
        self.manager = manager
        self.receive_timeout = receive_timeout or settings.ws_heartbeat_interval
        self.max_message_size = max_message_size or settings.ws_max_message_size

        self.connection: Connection | None = None

    async def run(self) -> None:
        """Admit, serve until disconnect, clean up."""
        self.connection = await self.manager.lifecycle.admit(self.websocket)
        if self.connection is None:
            return

        reason = "client_disconnect"
        try:
            reason = await self._message_loop()
        except WebSocketDisconnect:
            reason = "client_disconnect"
        except RuntimeError as e:
            # Starlette raises RuntimeError when receiving on a closed socket
            logger.debug("Receive on closed socket", error=str(e))
            reason = "socket_closed"
        except Exception as e:
            logger.error(
                "Unexpected error in message loop",
                connection_id=self.connection.connection_id,
                error=str(e),
                exc_info=True,
            )
            reason = "server_error"
        finally:
            await self.manager.lifecycle.close(self.connection, reason=reason)

    async def _message_loop(self) -> str:
        """
        Receive frames until the connection ends.

        Returns:
            Close reason for the audit log.
        """
        connection = self.connection
        while True:
            try:
                data = await asyncio.wait_for(
                    self._receive_frame(),
                    timeout=self.receive_timeout,
                )
            except asyncio.TimeoutError:
                # Idle is fine; liveness is the heartbeat monitor's call
                if connection.closed:
                    return "terminated"
                continue

            if connection.closed:
                return "terminated"

            if len(data) > self.max_message_size:
                logger.warning(
                    "Inbound frame too large",
                    connection_id=connection.connection_id,
                    size=len(data),
                    max_size=self.max_message_size,
                )
                await self.websocket.close(
                    code=WSCloseCode.MESSAGE_TOO_BIG,
                    reason="Message too large",
                )
                return "message_too_big"

            self.manager.stats.message_received()
            await self.manager.router.route(connection, data)

    async def _receive_frame(self) -> str | bytes:
        """
        Next inbound frame, text or binary.

        Binary frames are passed on as-is; the router decodes them like text
        and drops anything that is not UTF-8 JSON.

        Raises:
            WebSocketDisconnect: The client went away.
        """
        message = await self.websocket.receive()
        if message["type"] == "websocket.disconnect":
            raise WebSocketDisconnect(
                code=message.get("code", WSCloseCode.NORMAL),
                reason=message.get("reason"),
            )
        text = message.get("text")
        if text is not None:
            return text
        return message.get("bytes") or b""
