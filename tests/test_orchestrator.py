import pytest
import asyncio
from collections import Counter
from unittest.mock import AsyncMock, MagicMock, patch
from core.auth import AuthenticationError, Identity
from core.config import ProxyType, ServiceServer, SwarmOptions, WreckerSettings
from core.orchestrator import SwarmOrchestrator
from core.proxy_manager import Proxy, ProxyManager
from bots.base import ClientState


class FakeBot:
    """Stand-in bot recording when it was asked to connect."""

    def __init__(self, identity, proxy, service_server, log):
        self.identity = identity
        self.proxy = proxy
        self.service_server = service_server
        self.state = ClientState.BUILT
        self.last_error = None
        self.disconnected = False
        self._log = log

    @property
    def name(self):
        return self.identity.name

    async def connect(self, host, port):
        self._log.append((self.name, asyncio.get_running_loop().time()))
        self.state = ClientState.CONNECTED
        return True

    async def disconnect(self):
        self.disconnected = True
        self.state = ClientState.DISCONNECTED


class Harness:
    """Orchestrator wired to fake bots and a mock identity provider."""

    def __init__(self, proxies=None, accounts=None, login=None, drop=()):
        self.connects = []
        self.built = []
        self.drop = set(drop)
        self.provider = MagicMock()
        self.provider.login = login or AsyncMock(
            side_effect=lambda user, pw, proxy, server: Identity(user, "id-" + user, "tok")
        )
        self.provider.close = AsyncMock()
        self.orchestrator = SwarmOrchestrator(
            proxy_manager=ProxyManager(proxies or []),
            provider=self.provider,
            bot_factory=self.factory,
        )
        self.orchestrator.accounts = accounts

    def factory(self, identity, target, proxy, version, service_server, options):
        if identity.name in self.drop:
            return None
        bot = FakeBot(identity, proxy, service_server, self.connects)
        self.built.append(bot)
        return bot

    @property
    def connected_names(self):
        return [name for name, _ in self.connects]


def opts(**kwargs):
    kwargs.setdefault("join_delay_ms", 0)
    return SwarmOptions(**kwargs)


def make_proxies(count):
    return [Proxy(f"10.0.0.{i}", 1080) for i in range(count)]


async def wait_until(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


class TestSwarmBuild:
    """Test suite for the build phase."""

    @pytest.mark.asyncio
    async def test_generated_offline_bots_connect_in_order(self):
        h = Harness()
        await h.orchestrator.start(opts(amount=3, join_delay_ms=50))
        await h.orchestrator.wait_connected()

        assert [bot.name for bot in h.orchestrator.clients] == ["Bot0", "Bot1", "Bot2"]
        assert all(bot.identity.offline for bot in h.built)
        assert all(bot.proxy is None for bot in h.built)
        assert h.connected_names == ["Bot0", "Bot1", "Bot2"]
        times = [t for _, t in h.connects]
        assert all(b - a >= 0.04 for a, b in zip(times, times[1:]))
        h.provider.login.assert_not_called()

    @pytest.mark.asyncio
    async def test_short_account_list_truncates(self, caplog):
        h = Harness(accounts=["alice", "bob"])
        with caplog.at_level("WARNING"):
            await h.orchestrator.start(opts(amount=5))

        assert [bot.name for bot in h.orchestrator.clients] == ["alice", "bob"]
        assert "Amount is higher than the account list size. Limiting amount to 2" in caplog.text

    @pytest.mark.asyncio
    async def test_failed_login_skips_slot(self, caplog):
        async def login(user, pw, proxy, server):
            if user == "bad":
                raise AuthenticationError("Invalid credentials")
            return Identity(user.upper(), "id", "tok")

        h = Harness(accounts=["good:pw", "bad:pw", "other:pw"], login=AsyncMock(side_effect=login))
        with caplog.at_level("WARNING"):
            await h.orchestrator.start(opts(amount=3))

        assert [bot.name for bot in h.orchestrator.clients] == ["GOOD", "OTHER"]
        assert "The account bad failed to authenticate! (skipping it)" in caplog.text

    @pytest.mark.asyncio
    async def test_login_happens_without_proxy(self):
        h = Harness(proxies=make_proxies(1), accounts=["alice:pw"])
        await h.orchestrator.start(opts(amount=1, service_server=ServiceServer.THE_ALTENING))

        h.provider.login.assert_awaited_once_with("alice", "pw", None, ServiceServer.THE_ALTENING)
        assert h.built[0].service_server is ServiceServer.THE_ALTENING

    @pytest.mark.asyncio
    async def test_default_service_server_comes_from_settings(self):
        h = Harness(accounts=["alice:pw"])
        h.orchestrator.service_server = ServiceServer.THE_ALTENING
        await h.orchestrator.start(opts(amount=1))

        assert h.provider.login.call_args[0][3] is ServiceServer.THE_ALTENING

    def test_settings_supply_service_server(self):
        settings = WreckerSettings(service_server=ServiceServer.THE_ALTENING)
        orchestrator = SwarmOrchestrator(settings, provider=MagicMock())
        assert orchestrator.service_server is ServiceServer.THE_ALTENING

    @pytest.mark.asyncio
    async def test_proxy_capacity_limits_swarm(self, caplog):
        proxies = make_proxies(2)
        h = Harness(proxies=proxies)
        with caplog.at_level("WARNING"):
            await h.orchestrator.start(opts(amount=10, accounts_per_proxy=2))

        assert len(h.orchestrator.clients) == 4
        per_proxy = Counter(bot.proxy.address for bot in h.orchestrator.clients)
        assert set(per_proxy.values()) == {2}
        assert "All proxies in use now! Limiting amount to 4" in caplog.text

    @pytest.mark.asyncio
    async def test_no_login_once_proxies_are_full(self):
        h = Harness(proxies=make_proxies(1), accounts=["a:1", "b:2", "c:3"])
        await h.orchestrator.start(opts(amount=3, accounts_per_proxy=2))

        assert h.provider.login.await_count == 2
        assert len(h.orchestrator.clients) == 2

    @pytest.mark.asyncio
    async def test_uncapped_proxies_round_robin(self):
        proxies = make_proxies(2)
        h = Harness(proxies=proxies)
        await h.orchestrator.start(opts(amount=5))

        assert [bot.proxy for bot in h.orchestrator.clients] == [
            proxies[0], proxies[1], proxies[0], proxies[1], proxies[0],
        ]

    @pytest.mark.asyncio
    async def test_dropped_bot_frees_its_proxy(self):
        proxies = make_proxies(2)
        h = Harness(proxies=proxies, drop={"Bot1"})
        await h.orchestrator.start(opts(amount=3, accounts_per_proxy=1))

        assert [bot.name for bot in h.orchestrator.clients] == ["Bot0", "Bot2"]
        assert [bot.proxy for bot in h.orchestrator.clients] == proxies

    @pytest.mark.asyncio
    async def test_register_proxy_applies_to_next_run(self):
        h = Harness()
        proxy = h.orchestrator.register_proxy("10.9.9.9", 1080, "u", "p", ProxyType.SOCKS5)
        await h.orchestrator.start(opts(amount=1))

        assert h.orchestrator.clients[0].proxy is proxy

    @pytest.mark.asyncio
    async def test_run_proxy_type_applies_to_registered_proxies(self):
        h = Harness()
        h.orchestrator.register_proxy("10.0.0.1", 8080)
        await h.orchestrator.start(opts(amount=1, proxy_type=ProxyType.HTTP))

        bot_proxy = h.orchestrator.clients[0].proxy
        assert bot_proxy.address == ("10.0.0.1", 8080)
        assert bot_proxy.kind is ProxyType.HTTP
        assert h.orchestrator.proxy_manager.proxies[0].kind is ProxyType.SOCKS5

    @pytest.mark.asyncio
    async def test_zero_amount(self):
        h = Harness()
        await h.orchestrator.start(opts(amount=0))
        assert h.orchestrator.clients == ()
        assert h.connects == []

    @pytest.mark.asyncio
    async def test_debug_option_raises_log_level(self):
        h = Harness()
        with patch("core.orchestrator.set_log_level") as mock_level:
            await h.orchestrator.start(opts(amount=1, debug=True))
        mock_level.assert_called_once_with("DEBUG")


class TestSwarmConnect:
    """Test suite for the connect phase and run control."""

    @pytest.mark.asyncio
    async def test_pause_before_start_holds_connects(self):
        h = Harness()
        h.orchestrator.set_paused(True)
        task = asyncio.create_task(h.orchestrator.start(opts(amount=3)))

        await asyncio.sleep(0.3)
        assert len(h.built) == 3
        assert h.connects == []
        assert h.orchestrator.is_paused() is True

        h.orchestrator.set_paused(False)
        await asyncio.wait_for(task, timeout=2)
        await h.orchestrator.wait_connected()
        assert h.connected_names == ["Bot0", "Bot1", "Bot2"]

    @pytest.mark.asyncio
    async def test_pause_mid_run(self):
        h = Harness()
        task = asyncio.create_task(h.orchestrator.start(opts(amount=4, join_delay_ms=50)))

        await wait_until(lambda: len(h.connects) >= 1)
        h.orchestrator.set_paused(True)
        await asyncio.sleep(0.1)
        held = len(h.connects)
        await asyncio.sleep(0.3)
        assert len(h.connects) == held < 4

        h.orchestrator.set_paused(False)
        await asyncio.wait_for(task, timeout=2)
        await h.orchestrator.wait_connected()
        assert len(h.connects) == 4

    @pytest.mark.asyncio
    async def test_resume_is_followed_by_join_delay(self):
        h = Harness()
        h.orchestrator.set_paused(True)
        task = asyncio.create_task(h.orchestrator.start(opts(amount=1, join_delay_ms=200)))
        await wait_until(lambda: len(h.built) == 1)
        await asyncio.sleep(0.3)
        assert h.connects == []

        resumed_at = asyncio.get_running_loop().time()
        h.orchestrator.set_paused(False)
        await asyncio.wait_for(task, timeout=2)
        await h.orchestrator.wait_connected()

        assert h.connects[0][1] - resumed_at >= 0.15

    @pytest.mark.asyncio
    async def test_stopped_run_does_not_leak_into_next_run(self):
        gate = asyncio.Event()
        login_started = asyncio.Event()

        async def login(user, pw, proxy, server):
            if user == "slow":
                login_started.set()
                await gate.wait()
            return Identity(user, "id", "tok")

        h = Harness(accounts=["slow:pw", "old2:pw"], login=AsyncMock(side_effect=login))
        first_run = asyncio.create_task(h.orchestrator.start(opts(amount=2)))
        await asyncio.wait_for(login_started.wait(), timeout=1)

        await h.orchestrator.stop()
        h.orchestrator.accounts = ["new:pw"]
        await h.orchestrator.start(opts(amount=1))

        gate.set()
        await asyncio.wait_for(first_run, timeout=1)
        await h.orchestrator.wait_connected()

        assert [bot.name for bot in h.orchestrator.clients] == ["new"]
        assert h.connected_names == ["new"]

    @pytest.mark.asyncio
    async def test_stop_during_connect_phase(self):
        h = Harness()
        task = asyncio.create_task(h.orchestrator.start(opts(amount=5, join_delay_ms=100)))

        await wait_until(lambda: len(h.connects) >= 1)
        await h.orchestrator.stop()
        await asyncio.wait_for(task, timeout=1)
        issued = len(h.connects)
        await asyncio.sleep(0.25)

        assert len(h.connects) == issued < 5
        assert all(bot.disconnected for bot in h.built)
        assert h.orchestrator.clients == ()
        assert h.orchestrator.is_running() is False

    @pytest.mark.asyncio
    async def test_stop_while_paused(self):
        h = Harness()
        h.orchestrator.set_paused(True)
        task = asyncio.create_task(h.orchestrator.start(opts(amount=2)))
        await wait_until(lambda: len(h.built) == 2)

        await h.orchestrator.stop()
        await asyncio.wait_for(task, timeout=1)
        assert h.connects == []

    @pytest.mark.asyncio
    async def test_stop_during_build(self):
        h = Harness(accounts=["a:1", "b:2", "c:3"])

        async def login(user, pw, proxy, server):
            await h.orchestrator.stop()
            return Identity(user, "id", "tok")

        h.provider.login = AsyncMock(side_effect=login)
        await h.orchestrator.start(opts(amount=3))

        assert h.built == []
        assert h.provider.login.await_count == 1

    @pytest.mark.asyncio
    async def test_stop_when_idle_is_noop(self):
        h = Harness()
        await h.orchestrator.stop()
        await h.orchestrator.stop()
        assert h.orchestrator.is_running() is False

    @pytest.mark.asyncio
    async def test_start_while_running_raises(self):
        h = Harness()
        h.orchestrator.set_paused(True)
        task = asyncio.create_task(h.orchestrator.start(opts(amount=1)))
        await wait_until(lambda: len(h.built) == 1)

        with pytest.raises(RuntimeError):
            await h.orchestrator.start(opts(amount=1))

        await h.orchestrator.stop()
        await task

    @pytest.mark.asyncio
    async def test_restart_after_stop(self):
        h = Harness()
        await h.orchestrator.start(opts(amount=2))
        await h.orchestrator.wait_connected()
        await h.orchestrator.stop()
        await h.orchestrator.start(opts(amount=1))
        await h.orchestrator.wait_connected()

        assert len(h.orchestrator.clients) == 1
        assert len(h.connects) == 3

    @pytest.mark.asyncio
    async def test_disconnect_errors_are_ignored(self):
        h = Harness()
        await h.orchestrator.start(opts(amount=2))
        for bot in h.built:
            bot.disconnect = AsyncMock(side_effect=OSError("socket gone"))

        await h.orchestrator.stop()
        assert h.orchestrator.clients == ()
        for bot in h.built:
            bot.disconnect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_connect_errors_are_contained(self):
        h = Harness()
        original = h.factory

        def factory(*args):
            bot = original(*args)
            bot.connect = AsyncMock(side_effect=RuntimeError("boom"))
            return bot

        h.orchestrator.bot_factory = factory
        await h.orchestrator.start(opts(amount=2))
        await h.orchestrator.wait_connected()
        assert len(h.orchestrator.clients) == 2

    @pytest.mark.asyncio
    async def test_get_stats(self):
        h = Harness()
        await h.orchestrator.start(opts(amount=3))
        await h.orchestrator.wait_connected()
        h.built[0].state = ClientState.FAILED

        stats = h.orchestrator.get_stats()
        assert stats == {"total": 3, "connected": 2, "failed": 1}

    @pytest.mark.asyncio
    async def test_close_releases_provider(self):
        h = Harness()
        await h.orchestrator.start(opts(amount=1))
        await h.orchestrator.close()

        h.provider.close.assert_awaited_once()
        assert h.built[0].disconnected is True
