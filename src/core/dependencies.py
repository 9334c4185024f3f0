"""
Wiring of the auth runtime and the FastAPI dependencies that expose it.

One runtime per application: the flow is a single-user state machine, so the
gateway owns exactly one controller, adapter and session store.
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional, Union

from fastapi import Request
from redis.asyncio import Redis

from src.core.logger.logger import get_logger
from src.core.service.account.backend import AccountBackend, HttpAccountBackend
from src.core.service.account.memory_backend import InMemoryAccountBackend
from src.core.service.auth.account_change_watcher import AccountChangeWatcher
from src.core.service.auth.cache.session_store import SessionStore
from src.core.service.auth.flow_controller import AuthFlowController
from src.core.service.auth.identity_linker import IdentityLinker
from src.core.service.auth.reconnection_verifier import ReconnectionVerifier
from src.core.service.auth.utils.clock import Clock, now_ms
from src.core.service.wallet.adapter import WalletProviderAdapter
from src.core.service.wallet.environment import (
    ETHEREUM_NAMESPACE,
    WALLETCONNECT_NAMESPACE,
    ClientEnvironment,
)
from src.core.service.wallet.providers import JsonRpcProvider
from src.infra.config.redis import get_redis
from src.infra.config.settings import get_settings
from src.infra.storage.memory import MemoryStorage

logger = get_logger(__name__)
settings = get_settings()


@dataclass
class AuthRuntime:
    environment: ClientEnvironment
    adapter: WalletProviderAdapter
    store: SessionStore
    verifier: ReconnectionVerifier
    linker: IdentityLinker
    backend: AccountBackend
    controller: AuthFlowController
    watcher: AccountChangeWatcher
    closeables: List[Any] = field(default_factory=list)

    async def aclose(self) -> None:
        await self.watcher.stop()
        self.adapter.disconnect()
        for resource in self.closeables:
            try:
                await resource.aclose()
            except Exception as e:
                logger.warning(
                    "Failed to close resource",
                    extra={"resource": type(resource).__name__, "error": str(e)}
                )


def build_client_environment() -> ClientEnvironment:
    """Client environment as configured; the bridge provider is injected when a URL is set"""
    providers = {}
    if settings.WALLET_RPC_URL:
        kind = settings.WALLET_PROVIDER_KIND
        namespace = WALLETCONNECT_NAMESPACE if kind == "walletconnect" else ETHEREUM_NAMESPACE
        providers[namespace] = JsonRpcProvider(settings.WALLET_RPC_URL, wallet_kind=kind)
        logger.info(
            "Wallet bridge provider configured",
            extra={"url": settings.WALLET_RPC_URL, "wallet_kind": kind}
        )
    return ClientEnvironment(
        user_agent=settings.CLIENT_USER_AGENT,
        location=settings.CLIENT_LOCATION,
        providers=providers
    )


async def build_session_storage() -> Union[Redis, MemoryStorage]:
    if settings.SESSION_BACKEND == "memory":
        return MemoryStorage()
    return await get_redis()


def build_account_backend() -> AccountBackend:
    if settings.ACCOUNT_BACKEND_URL:
        return HttpAccountBackend(settings.ACCOUNT_BACKEND_URL)
    logger.warning("ACCOUNT_BACKEND_URL not configured - using in-memory accounts")
    return InMemoryAccountBackend()


def build_auth_runtime(
    storage: Union[Redis, MemoryStorage],
    environment: Optional[ClientEnvironment] = None,
    backend: Optional[AccountBackend] = None,
    clock: Clock = now_ms,
    deep_link_timeout: Optional[float] = None,
    reconnect_delay: Optional[float] = None
) -> AuthRuntime:
    """Assemble the auth components leaf-first and start the watcher"""
    environment = environment or build_client_environment()
    backend = backend or build_account_backend()

    adapter = WalletProviderAdapter(environment, deep_link_timeout=deep_link_timeout)
    store = SessionStore(storage, clock=clock)
    verifier = ReconnectionVerifier(adapter, store)
    linker = IdentityLinker(adapter, backend, clock=clock)
    controller = AuthFlowController(adapter, store, verifier, linker, backend)
    watcher = AccountChangeWatcher(adapter, controller, reconnect_delay=reconnect_delay)
    watcher.start()

    closeables = [p for p in environment.providers.values() if hasattr(p, "aclose")]
    if hasattr(backend, "aclose"):
        closeables.append(backend)

    return AuthRuntime(
        environment=environment,
        adapter=adapter,
        store=store,
        verifier=verifier,
        linker=linker,
        backend=backend,
        controller=controller,
        watcher=watcher,
        closeables=closeables
    )


def get_auth_runtime(request: Request) -> AuthRuntime:
    """Get the auth runtime created at startup"""
    return request.app.state.auth


def get_flow_controller(request: Request) -> AuthFlowController:
    return get_auth_runtime(request).controller
