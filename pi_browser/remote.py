"""
Remote command channel for the browser extension.

The extension connects to a local WebSocket server and executes commands in
the user's real browser. Requests and replies are JSON text frames:

    request:  {"id": 7, "command": "navigate", "params": {"url": "..."}}
    reply:    {"id": 7, "result": {...}}   or   {"id": 7, "error": "..."}

Only the most recent connection is used. Replies are matched to requests by
id; anything that cannot be matched is dropped.
"""

import asyncio
import itertools
import json
import logging
from typing import Any, Optional

from websockets.asyncio.server import serve
from websockets.exceptions import ConnectionClosed

from .errors import ActionFailed, ActuatorUnavailable, RemoteTimeout

logger = logging.getLogger(__name__)

NOT_CONNECTED_MESSAGE = (
    "Extension is not connected. Open Chrome with the Pi-Browser extension enabled."
)


class CommandChannel:
    """Request/response correlation over the active extension connection.

    A connection is any object with an async ``send(text)`` method (a
    websockets ServerConnection in production).
    """

    def __init__(self, timeout: float = 60.0):
        self.timeout = timeout
        self._connection: Optional[Any] = None
        self._connected = asyncio.Event()
        self._pending: dict[int, asyncio.Future] = {}
        self._ids = itertools.count(1)

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def attach(self, connection: Any) -> None:
        """Make connection the active one, superseding any previous one."""
        if self._connection is not None and self._connection is not connection:
            logger.info("Extension reconnected; previous connection superseded")
        self._connection = connection
        self._connected.set()

    def detach(self, connection: Any) -> None:
        """Forget connection if it is still the active one.

        Pending requests are left to time out.
        """
        if connection is not self._connection:
            return
        self._connection = None
        self._connected.clear()
        logger.info("Extension disconnected (%d pending)", len(self._pending))

    async def wait_for_connection(self, timeout: Optional[float] = None) -> bool:
        """Wait until an extension connects.

        Returns:
            True if connected, False if the timeout elapsed first
        """
        try:
            await asyncio.wait_for(self._connected.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    def handle_message(self, connection: Any, raw: Any) -> None:
        """Route one incoming frame to the request it answers."""
        if connection is not self._connection:
            logger.debug("Dropping frame from superseded connection")
            return

        try:
            message = json.loads(raw)
        except (TypeError, ValueError):
            logger.debug("Dropping malformed frame: %r", raw)
            return
        if not isinstance(message, dict):
            logger.debug("Dropping non-object frame: %r", raw)
            return

        request_id = message.get("id")
        future = self._pending.pop(request_id, None) if isinstance(request_id, int) else None
        if future is None:
            logger.debug("Dropping reply with unknown id: %r", request_id)
            return
        if future.done():
            return

        if message.get("error") is not None:
            future.set_exception(ActionFailed(str(message["error"])))
        else:
            future.set_result(message.get("result"))

    async def send(self, command: str, params: Optional[dict[str, Any]] = None) -> Any:
        """Send a command and wait for its reply.

        Args:
            command: Extension command name (navigate, click, getText, ...)
            params: Command parameters

        Returns:
            The reply's result value

        Raises:
            ActuatorUnavailable: If no extension is connected
            RemoteTimeout: If no reply arrives within the timeout
            ActionFailed: If the extension replies with an error
        """
        connection = self._connection
        if connection is None:
            raise ActuatorUnavailable(NOT_CONNECTED_MESSAGE)

        loop = asyncio.get_running_loop()
        request_id = next(self._ids)
        future = loop.create_future()
        self._pending[request_id] = future

        def _expire() -> None:
            if self._pending.pop(request_id, None) is not None and not future.done():
                future.set_exception(RemoteTimeout(command, self.timeout))

        timer = loop.call_later(self.timeout, _expire)
        payload = json.dumps({"id": request_id, "command": command, "params": params or {}})

        try:
            try:
                await connection.send(payload)
            except ConnectionClosed as e:
                self._pending.pop(request_id, None)
                raise ActuatorUnavailable(f"Extension connection closed: {e}") from e
            logger.debug("Sent command %s (id=%d)", command, request_id)
            return await future
        finally:
            timer.cancel()
            self._pending.pop(request_id, None)


class ExtensionServer:
    """WebSocket server the extension connects to."""

    def __init__(self, channel: CommandChannel, host: str = "127.0.0.1", port: int = 9876):
        self.channel = channel
        self.host = host
        self.port = port
        self._server = None

    async def _handler(self, connection) -> None:
        self.channel.attach(connection)
        logger.info("Extension connected from %s", connection.remote_address)
        try:
            async for raw in connection:
                self.channel.handle_message(connection, raw)
        except ConnectionClosed as e:
            logger.debug("Extension connection closed: %s", e)
        finally:
            self.channel.detach(connection)

    async def start(self) -> None:
        if self._server is not None:
            return
        self._server = await serve(self._handler, self.host, self.port, max_size=None)
        logger.info("Extension server listening on ws://%s:%d", self.host, self.port)

    async def stop(self) -> None:
        if self._server is None:
            return
        self._server.close()
        await self._server.wait_closed()
        self._server = None

    async def __aenter__(self) -> "ExtensionServer":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()
