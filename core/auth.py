"""Bot authentication for ServerWrecker.

Converts a ``(version, username, password, proxy)`` tuple into an
:class:`Identity`.  Accounts without a password are derived offline; all
others go through an :class:`IdentityProvider` (by default the
Yggdrasil-style :class:`YggdrasilProvider` over ``aiohttp``).

Failures never escape :func:`authenticate`: they come back as an
:class:`AuthFailure` so the orchestrator can skip the slot and carry on.
"""

import hashlib
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

import aiohttp

from core.config import GameVersion, ProxyType, ServiceServer
from core.proxy_manager import Proxy

logger = logging.getLogger(__name__)

AUTH_TIMEOUT_SECONDS = 15


class AuthenticationError(Exception):
    """The identity provider rejected the login or could not be reached."""


@dataclass(frozen=True)
class Identity:
    """A credentialed bot identity.

    Attributes:
        name: Display name used on the target server.
        uuid: Profile id (dashed form).
        access_token: Session token; empty for offline identities.
        client_token: Client token paired with the access token.
        offline: ``True`` when no identity provider was involved.
    """

    name: str
    uuid: str
    access_token: str = ""
    client_token: str = ""
    offline: bool = False


@dataclass(frozen=True)
class AuthFailure:
    """Outcome of a login that did not produce an identity."""

    username: str
    cause: BaseException

    def __str__(self) -> str:
        return f"{self.username}: {self.cause}"


def offline_identity(username: str) -> Identity:
    """Derive an offline identity for *username*.

    The profile id is the name-based (MD5, version 3) UUID of
    ``"OfflinePlayer:<name>"``, the same id an offline-mode server computes.
    """
    digest = bytearray(hashlib.md5(f"OfflinePlayer:{username}".encode("utf-8")).digest())
    digest[6] = (digest[6] & 0x0F) | 0x30
    digest[8] = (digest[8] & 0x3F) | 0x80
    return Identity(
        name=username,
        uuid=str(uuid.UUID(bytes=bytes(digest))),
        offline=True,
    )


class IdentityProvider:
    """Transport seam for online logins.

    Subclasses implement :meth:`login`; any exception they raise is turned
    into an :class:`AuthFailure` by :func:`authenticate`.
    """

    async def login(
        self,
        username: str,
        password: str,
        proxy: Optional[Proxy],
        service_server: ServiceServer,
    ) -> Identity:
        raise NotImplementedError

    async def close(self) -> None:
        pass


class YggdrasilProvider(IdentityProvider):
    """Username/password login against a Yggdrasil-compatible server."""

    AGENT = {"name": "Minecraft", "version": 1}

    def __init__(self, timeout: float = AUTH_TIMEOUT_SECONDS) -> None:
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    @staticmethod
    def _proxy_kwargs(proxy: Optional[Proxy]) -> Dict[str, Any]:
        if proxy is None:
            return {}
        if proxy.kind is not ProxyType.HTTP:
            raise AuthenticationError(
                f"Cannot authenticate through {proxy.kind.value} proxy {proxy.masked()}"
            )
        kwargs: Dict[str, Any] = {"proxy": f"http://{proxy.host}:{proxy.port}"}
        if proxy.has_credentials:
            kwargs["proxy_auth"] = aiohttp.BasicAuth(proxy.username, proxy.password)
        return kwargs

    async def login(
        self,
        username: str,
        password: str,
        proxy: Optional[Proxy],
        service_server: ServiceServer,
    ) -> Identity:
        client_token = uuid.uuid4().hex
        payload = {
            "agent": self.AGENT,
            "username": username,
            "password": password,
            "clientToken": client_token,
            "requestUser": True,
        }
        url = f"{service_server.auth_url}authenticate"

        session = await self._get_session()
        async with session.post(url, json=payload, **self._proxy_kwargs(proxy)) as response:
            try:
                data = await response.json(content_type=None)
            except ValueError:
                data = None

            if response.status != 200:
                message = ""
                if isinstance(data, dict):
                    message = data.get("errorMessage") or data.get("error") or ""
                raise AuthenticationError(
                    f"HTTP {response.status} from {service_server.name}"
                    + (f": {message}" if message else "")
                )

        if not isinstance(data, dict) or data.get("error"):
            raise AuthenticationError(f"Invalid response from {service_server.name}")

        profile = data.get("selectedProfile")
        if not profile or not profile.get("name"):
            raise AuthenticationError(f"Account {username} has no game profile")

        raw_id = str(profile.get("id", ""))
        try:
            profile_id = str(uuid.UUID(raw_id))
        except ValueError:
            profile_id = raw_id

        return Identity(
            name=profile["name"],
            uuid=profile_id,
            access_token=data.get("accessToken", ""),
            client_token=data.get("clientToken", client_token),
        )

    async def close(self) -> None:
        if self._session:
            await self._session.close()


async def authenticate(
    version: GameVersion,
    username: str,
    password: str,
    proxy: Optional[Proxy],
    service_server: ServiceServer,
    provider: IdentityProvider,
) -> Union[Identity, AuthFailure]:
    """Authenticate one bot.

    Args:
        version: Protocol version the identity is for (logged only).
        username: Account name or e-mail.
        password: Account password; empty means offline.
        proxy: Egress proxy for the login request, or ``None``.
        service_server: Identity provider to log in against.
        provider: Transport performing the online login.

    Returns:
        The identity, or an :class:`AuthFailure` describing why the login
        failed.
    """
    if not password:
        return offline_identity(username)

    try:
        identity = await provider.login(username, password, proxy, service_server)
    except Exception as e:
        logger.warning("Failed to authenticate %s! (%s)", username, e)
        logger.debug("Authentication traceback for %s", username, exc_info=True)
        return AuthFailure(username, e)

    logger.debug(
        "Authenticated %s as %s for %s via %s",
        username, identity.name, version.value, service_server.name,
    )
    return identity
