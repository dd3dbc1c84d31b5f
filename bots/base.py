"""Base bot client and connection states for ServerWrecker.

:class:`BotClient` is the handle the orchestrator keeps in its registry.  It
owns the connection state machine::

    BUILT -> CONNECTING -> CONNECTED
                        -> FAILED
    (any) -> DISCONNECTED          via disconnect()

Subclasses provide the transport through three coroutines:

* ``_open_session(host, port)`` -- establish the connection.
* ``_run_session()`` -- service it until the server goes away.
* ``_close_session()`` -- release sockets; must tolerate partial opens.
"""

import asyncio
import logging
from enum import Enum
from typing import Optional

from core.auth import Identity
from core.config import GameVersion, ServiceServer
from core.proxy_manager import Proxy

logger = logging.getLogger(__name__)


class ClientState(Enum):
    """Lifecycle states of a bot connection."""

    BUILT = "built"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"
    DISCONNECTED = "disconnected"


class BotClient:
    """Abstract base class for all bot clients.

    Attributes:
        identity: Credentialed identity the bot plays as.
        version: Protocol version the bot was built for.
        proxy: Egress proxy, or ``None`` for a direct connection.
        service_server: Identity provider the identity came from.
        connect_timeout: Seconds allowed for :meth:`connect`.
        state: Current :class:`ClientState`.
        host / port: Target of the last connect call.
        last_error: Text of the last connect or session error.
    """

    def __init__(
        self,
        identity: Identity,
        version: GameVersion,
        proxy: Optional[Proxy] = None,
        service_server: ServiceServer = ServiceServer.MOJANG,
        connect_timeout: float = 30.0,
    ) -> None:
        self.identity = identity
        self.version = version
        self.proxy = proxy
        self.service_server = service_server
        self.connect_timeout = connect_timeout
        self.state = ClientState.BUILT
        self.host: Optional[str] = None
        self.port: Optional[int] = None
        self.last_error: Optional[str] = None
        self._connect_task: Optional[asyncio.Task] = None
        self._session_task: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name} {self.state.value}>"

    @classmethod
    def supports(cls, proxy: Optional[Proxy]) -> bool:
        """Whether this bot class can connect through *proxy*."""
        return True

    @property
    def name(self) -> str:
        return self.identity.name

    async def connect(self, host: str, port: int) -> bool:
        """Connect to the target server.

        Connection errors are recorded on the bot, never raised.

        Returns:
            ``True`` if the bot reached ``CONNECTED``.
        """
        if self.state is not ClientState.BUILT:
            logger.debug("[%s] connect() ignored in state %s", self.name, self.state.value)
            return False

        self.host, self.port = host, port
        self.state = ClientState.CONNECTING
        self._connect_task = asyncio.current_task()

        try:
            await asyncio.wait_for(
                self._open_session(host, port), timeout=self.connect_timeout,
            )
        except asyncio.CancelledError:
            await self._safe_close()
            raise
        except Exception as e:
            self.last_error = str(e) or type(e).__name__
            if self.state is ClientState.CONNECTING:
                self.state = ClientState.FAILED
            logger.warning(
                "[%s] Failed to connect to %s:%d (%s)",
                self.name, host, port, self.last_error,
            )
            await self._safe_close()
            return False
        finally:
            self._connect_task = None

        if self.state is not ClientState.CONNECTING:
            # disconnect() won the race while the session was opening
            await self._safe_close()
            return False

        self.state = ClientState.CONNECTED
        logger.info(
            "[%s] Connected to %s:%d%s",
            self.name, host, port,
            f" via {self.proxy.masked()}" if self.proxy else "",
        )
        self._session_task = asyncio.create_task(self._session_loop())
        return True

    async def _session_loop(self) -> None:
        try:
            await self._run_session()
            reason = "closed by server"
        except asyncio.CancelledError:
            raise
        except Exception as e:
            reason = str(e) or type(e).__name__

        if self.state is ClientState.CONNECTED:
            self.last_error = reason
            self.state = ClientState.DISCONNECTED
            logger.info("[%s] Connection lost (%s)", self.name, reason)
            await self._safe_close()

    async def disconnect(self) -> None:
        """Tear the connection down.  Idempotent; never raises."""
        if self.state is ClientState.DISCONNECTED:
            return

        self.state = ClientState.DISCONNECTED
        current = asyncio.current_task()
        for task in (self._connect_task, self._session_task):
            if task is not None and task is not current and not task.done():
                task.cancel()

        await self._safe_close()
        logger.debug("[%s] Disconnected", self.name)

    async def _safe_close(self) -> None:
        try:
            await self._close_session()
        except Exception as e:
            logger.debug("[%s] Error while closing session: %s", self.name, e)

    async def _open_session(self, host: str, port: int) -> None:
        raise NotImplementedError

    async def _run_session(self) -> None:
        raise NotImplementedError

    async def _close_session(self) -> None:
        pass
