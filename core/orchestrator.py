"""Swarm orchestration engine for ServerWrecker.

:class:`SwarmOrchestrator` builds a swarm of bots and connects them to the
target server one after another.  A run has two phases:

* **Build** -- for every requested slot: resolve the account, log in,
  pick a proxy, build the bot, add it to the registry.  Login failures and
  bots the factory cannot build drop the slot; running out of proxy
  capacity ends the phase early.
* **Connect** -- walk the registry in creation order, waiting while
  paused, sleeping the join delay before each bot, and giving up as soon as
  :meth:`SwarmOrchestrator.stop` is called.  Each connect runs in its own
  task so a slow handshake never holds up the next bot.

Nothing in here is fatal: every failure shrinks the swarm and is logged.
"""

import asyncio
import logging
from collections import Counter
from typing import Any, Callable, Dict, List, Optional, Tuple

from core.accounts import CredentialResolver
from core.auth import AuthFailure, IdentityProvider, YggdrasilProvider, authenticate
from core.config import ProxyType, ServiceServer, SwarmOptions, WreckerSettings
from core.logging_setup import set_log_level
from core.proxy_manager import (
    Proxy,
    ProxyAllocator,
    ProxyExhaustedError,
    ProxyManager,
)
from core.registry import create_bot

logger = logging.getLogger(__name__)

PAUSE_POLL_INTERVAL_SECONDS = 0.1


class SwarmOrchestrator:
    """
    Top-level controller for one swarm.

    Owns the registry of built bots and the ``running`` / ``paused`` flags.
    The flags are plain attributes: everything runs on one event loop, so
    the connect loop sees :meth:`set_paused` at its next check without any
    locking.  Cancellation goes through a stop event created per run, so a
    run that was stopped while awaiting a login never resumes into the
    registry of a later run.

    Only one run may be active at a time; calling :meth:`start` while
    running raises ``RuntimeError``.
    """

    def __init__(
        self,
        settings: Optional[WreckerSettings] = None,
        proxy_manager: Optional[ProxyManager] = None,
        provider: Optional[IdentityProvider] = None,
        bot_factory: Callable[..., Any] = create_bot,
    ):
        """
        Initialize the orchestrator.

        Args:
            settings: Global configuration; supplies the default service
                server.
            proxy_manager: Registry of egress proxies (a new, empty one is
                created when omitted).
            provider: Transport for online logins.
            bot_factory: Callable building a bot; see
                :func:`core.registry.create_bot` for the signature.
        """
        self.settings = settings
        self.proxy_manager = proxy_manager if proxy_manager is not None else ProxyManager()
        self.provider = provider or YggdrasilProvider()
        self.bot_factory = bot_factory

        # Raw account lines set by the presentation layer; None = generate names
        self.accounts: Optional[List[str]] = None
        self.service_server: ServiceServer = (
            settings.service_server if settings else ServiceServer.MOJANG
        )

        self.running = False
        self.paused = False
        self._clients: List[Any] = []
        self._connect_tasks: List[asyncio.Task] = []
        self._stop_event = asyncio.Event()

    # ------------------------------------------------------------------
    # Presentation-layer API
    # ------------------------------------------------------------------

    def is_running(self) -> bool:
        return self.running

    def is_paused(self) -> bool:
        return self.paused

    def set_paused(self, paused: bool) -> None:
        """Hold back (or release) connects that have not been issued yet."""
        if paused != self.paused:
            logger.info("Swarm %s", "paused" if paused else "resumed")
        self.paused = paused

    def register_proxy(
        self,
        host: str,
        port: int,
        username: str = "",
        password: str = "",
        kind: Optional[ProxyType] = None,
    ) -> Proxy:
        """Register a proxy (and its credentials) for upcoming runs.

        Without *kind* the proxy follows each run's ``proxy_type``.
        """
        return self.proxy_manager.register(host, port, username, password, kind)

    @property
    def clients(self) -> Tuple[Any, ...]:
        """Bots of the current run, in creation order."""
        return tuple(self._clients)

    def get_stats(self) -> Dict[str, int]:
        """Count bots per connection state, plus ``total``."""
        counts = Counter(bot.state.value for bot in self._clients)
        stats = dict(counts)
        stats["total"] = len(self._clients)
        return stats

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, options: SwarmOptions) -> None:
        """Build the swarm and connect it.

        Returns when every connect has been issued, or as soon as
        :meth:`stop` is observed.  Wrap it in ``asyncio.create_task`` to
        keep the caller free to pause or stop the run.

        Raises:
            RuntimeError: A run is already active.
        """
        if self.running:
            raise RuntimeError("Swarm is already running; stop() it first")

        self.running = True
        # Each run owns its stop event; a stale run still sees its own one set
        stop_event = asyncio.Event()
        self._stop_event = stop_event
        if options.debug:
            set_log_level("DEBUG")

        service_server = options.service_server or self.service_server
        logger.info(
            "Starting swarm: %d bot(s) -> %s:%d (version %s, %s)",
            options.amount, options.host, options.port,
            options.game_version.value, service_server.name,
        )

        await self._build(options, service_server, stop_event)
        if stop_event.is_set():
            return

        logger.info(
            "Built %d/%d bot(s), connecting...",
            len(self._clients), options.amount,
        )
        await self._connect_all(options, stop_event)

    async def stop(self) -> None:
        """Stop the run and disconnect every bot.

        Safe to call at any time, including when nothing is running.
        """
        was_running = self.running
        self.running = False
        self._stop_event.set()

        clients, self._clients = self._clients, []
        for bot in clients:
            try:
                await bot.disconnect()
            except Exception as e:
                logger.debug("Ignoring disconnect error for %s: %s", bot, e)

        tasks, self._connect_tasks = self._connect_tasks, []
        for task in tasks:
            if not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        if was_running:
            logger.info("Swarm stopped (%d bot(s) disconnected)", len(clients))

    async def wait_connected(self) -> None:
        """Wait for every connect issued so far to finish."""
        if self._connect_tasks:
            await asyncio.gather(*list(self._connect_tasks), return_exceptions=True)

    async def close(self) -> None:
        """Stop the swarm and release the identity provider's session."""
        await self.stop()
        await self.provider.close()

    # ------------------------------------------------------------------
    # Build phase
    # ------------------------------------------------------------------

    async def _build(
        self,
        options: SwarmOptions,
        service_server: ServiceServer,
        stop_event: asyncio.Event,
    ) -> None:
        allocator: ProxyAllocator = self.proxy_manager.snapshot(options.proxy_type)
        resolver = CredentialResolver(options.amount, self.accounts, options.name_format)
        capacity = options.accounts_per_proxy
        target = (options.host, options.port)

        if not allocator.direct:
            logger.info(
                "Using %d prox%s (%s per proxy)",
                len(allocator.endpoints),
                "y" if len(allocator.endpoints) == 1 else "ies",
                capacity if capacity > 0 else "unlimited",
            )

        for credential in resolver:
            if stop_event.is_set():
                return

            # Skip the login when no proxy could take the bot anyway
            if allocator.is_full(capacity):
                logger.warning(
                    "All proxies in use now! Limiting amount to %d...",
                    len(self._clients),
                )
                break

            result = await authenticate(
                options.game_version,
                credential.username,
                credential.password,
                None,
                service_server,
                self.provider,
            )
            if stop_event.is_set():
                return
            if isinstance(result, AuthFailure):
                logger.warning(
                    "The account %s failed to authenticate! (skipping it)",
                    credential.username,
                )
                continue

            try:
                proxy = allocator.next(capacity)
            except ProxyExhaustedError as e:
                logger.warning("%s. Limiting amount to %d...", e, len(self._clients))
                break

            bot = self.bot_factory(
                result, target, proxy, options.game_version, service_server, options,
            )
            if bot is None:
                allocator.release(proxy)
                continue

            self._clients.append(bot)
            logger.debug(
                "Slot %d: %s%s", len(self._clients), result.name,
                f" via {proxy.masked()}" if proxy else "",
            )

        if resolver.truncated:
            logger.warning(
                "Amount is higher than the account list size. Limiting amount to %d...",
                resolver.available,
            )

    # ------------------------------------------------------------------
    # Connect phase
    # ------------------------------------------------------------------

    async def _connect_all(self, options: SwarmOptions, stop_event: asyncio.Event) -> None:
        delay = options.join_delay_ms / 1000.0

        for bot in list(self._clients):
            if not await self._wait_turn(delay, stop_event):
                logger.info("Swarm stopped, aborting connect phase")
                return

            task = asyncio.create_task(self._connect_bot(bot, options.host, options.port))
            self._connect_tasks.append(task)

        logger.info("All %d connect(s) issued", len(self._connect_tasks))

    async def _wait_turn(self, delay: float, stop_event: asyncio.Event) -> bool:
        """Hold while paused, then sleep the join delay.

        Returns:
            ``False`` if the run was stopped meanwhile.
        """
        while self.paused and not stop_event.is_set():
            await asyncio.sleep(PAUSE_POLL_INTERVAL_SECONDS)

        if delay > 0:
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass  # Delay elapsed
        else:
            await asyncio.sleep(0)

        return not stop_event.is_set()

    async def _connect_bot(self, bot: Any, host: str, port: int) -> None:
        try:
            await bot.connect(host, port)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("[%s] Connect raised: %s", getattr(bot, "name", bot), e)
