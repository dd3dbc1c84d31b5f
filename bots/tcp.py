"""Raw TCP bot.

Holds one TCP session against the target, either directly or through the
bot's proxy, and keeps it open by draining whatever the server sends.  It
is the default builder for every protocol version in
:data:`core.registry.BOT_REGISTRY`.
"""

import asyncio
import logging
from typing import Optional

from bots.base import BotClient
from bots.tunnel import open_tunnel
from core.config import ProxyType
from core.proxy_manager import Proxy

logger = logging.getLogger(__name__)


class TcpBot(BotClient):
    """Bot that opens and holds a plain TCP connection."""

    READ_CHUNK = 4096

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.bytes_received = 0
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None

    @classmethod
    def supports(cls, proxy: Optional[Proxy]) -> bool:
        # SOCKS4 only carries a user id; a password cannot be delivered
        if proxy is not None and proxy.kind is ProxyType.SOCKS4 and proxy.password:
            return False
        return True

    async def _open_session(self, host: str, port: int) -> None:
        if self.proxy is not None:
            self._reader, self._writer = await open_tunnel(self.proxy, host, port)
        else:
            self._reader, self._writer = await asyncio.open_connection(host, port)

    async def _run_session(self) -> None:
        while True:
            data = await self._reader.read(self.READ_CHUNK)
            if not data:
                break
            self.bytes_received += len(data)

    async def _close_session(self) -> None:
        writer, self._writer = self._writer, None
        self._reader = None
        if writer is None:
            return
        writer.close()
        try:
            await writer.wait_closed()
        except (ConnectionError, OSError):
            pass
