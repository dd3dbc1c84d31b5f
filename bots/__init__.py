"""
Bots module for ServerWrecker.

Each bot class inherits from :class:`BotClient` (defined in ``base.py``) and
implements ``_open_session``, ``_run_session`` and ``_close_session``.  The
base class owns the connection state machine; subclasses only move bytes.

Bot classes are looked up per protocol version through
:mod:`core.registry`, never instantiated directly by the orchestrator.

Submodules:
    base: ``BotClient`` base class, ``ClientState`` enum.
    tcp: ``TcpBot`` -- raw TCP session, direct or through a proxy tunnel.
    tunnel: ``open_tunnel`` -- HTTP CONNECT, SOCKS4(a) and SOCKS5 handshakes.
"""

from .base import BotClient, ClientState
from .tcp import TcpBot

__all__ = [
    "BotClient",
    "ClientState",
    "TcpBot",
]
