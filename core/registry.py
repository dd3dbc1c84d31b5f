"""Bot factory registry for ServerWrecker.

Maps protocol versions to the bot classes that speak them.  Values are
dotted-path strings resolved lazily on first use, so a version's
implementation is only imported when a swarm actually targets it.

Usage::

    from core.registry import create_bot

    bot = create_bot(identity, ("127.0.0.1", 25565), proxy, GameVersion.V1_17)
    if bot:
        await bot.connect("127.0.0.1", 25565)
"""

import importlib
import logging
from typing import Dict, Optional, Tuple, Union

from core.auth import Identity
from core.config import GameVersion, ServiceServer, SwarmOptions
from core.proxy_manager import Proxy

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Central Registry
# ---------------------------------------------------------------------------
# Values are either a class reference or a dotted-path string
# ``"module.ClassName"`` that is resolved lazily on first use.
BOT_REGISTRY: Dict[GameVersion, Union[type, str]] = {
    GameVersion.V1_8: "bots.tcp.TcpBot",
    GameVersion.V1_9: "bots.tcp.TcpBot",
    GameVersion.V1_10: "bots.tcp.TcpBot",
    GameVersion.V1_11: "bots.tcp.TcpBot",
    GameVersion.V1_12: "bots.tcp.TcpBot",
    GameVersion.V1_13: "bots.tcp.TcpBot",
    GameVersion.V1_14: "bots.tcp.TcpBot",
    GameVersion.V1_15: "bots.tcp.TcpBot",
    GameVersion.V1_16: "bots.tcp.TcpBot",
    GameVersion.V1_17: "bots.tcp.TcpBot",
}


def get_bot_class(version: GameVersion) -> Optional[type]:
    """Resolve the bot class registered for *version*.

    Returns:
        The bot class, or ``None`` if *version* is not registered.
    """
    cls_or_str = BOT_REGISTRY.get(version)
    if not cls_or_str:
        return None

    if isinstance(cls_or_str, str):
        module_path, class_name = cls_or_str.rsplit('.', 1)
        module = importlib.import_module(module_path)
        return getattr(module, class_name)

    return cls_or_str


def create_bot(
    identity: Identity,
    target: Tuple[str, int],
    proxy: Optional[Proxy],
    version: GameVersion,
    service_server: ServiceServer = ServiceServer.MOJANG,
    options: Optional[SwarmOptions] = None,
):
    """Build a bot for *identity*.

    Args:
        identity: Authenticated identity for the bot.
        target: ``(host, port)`` the bot will connect to.
        proxy: Assigned egress proxy, or ``None`` for a direct connection.
        version: Protocol version selecting the bot class.
        service_server: Identity provider the identity came from.
        options: Run options (connect timeout).

    Returns:
        A :class:`bots.base.BotClient` in ``BUILT`` state, or ``None`` when
        the version has no implementation or the implementation cannot
        use *proxy*.
    """
    bot_class = get_bot_class(version)
    if bot_class is None:
        logger.debug("No bot implementation registered for %s", version.value)
        return None

    if not bot_class.supports(proxy):
        logger.debug(
            "%s cannot connect through %s, dropping %s",
            bot_class.__name__, proxy.masked() if proxy else "direct", identity.name,
        )
        return None

    timeout = options.connect_timeout if options else 30.0
    bot = bot_class(
        identity,
        version,
        proxy=proxy,
        service_server=service_server,
        connect_timeout=timeout,
    )
    logger.debug(
        "Built %s for %s -> %s:%d", bot_class.__name__, identity.name, *target,
    )
    return bot
