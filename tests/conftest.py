"""
Shared fixtures: a controllable clock, in-memory storage and accounts, and
wallet providers backed by real eth-account keys.
"""

from typing import Any, List, Optional

import pytest
from eth_account import Account

from src.core.dependencies import build_auth_runtime
from src.core.service.account.memory_backend import InMemoryAccountBackend
from src.core.service.wallet.environment import ETHEREUM_NAMESPACE, ClientEnvironment
from src.core.service.wallet.providers import (
    ETH_ACCOUNTS,
    ETH_CHAIN_ID,
    ETH_REQUEST_ACCOUNTS,
    UNSUPPORTED_METHOD,
    EthereumProvider,
    LocalAccountProvider,
    ProviderRpcError,
)
from src.infra.storage.memory import MemoryStorage

DESKTOP_USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 Chrome/120.0 Safari/537.36"
MOBILE_USER_AGENT = "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 Mobile/15E148"

START_MS = 1_700_000_000_000
HOUR_MS = 60 * 60 * 1000


class FakeClock:
    """Epoch-millisecond clock advanced by hand"""

    def __init__(self, start: int = START_MS):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class StaticProvider(EthereumProvider):
    """Provider exposing fixed accounts without signing capability"""

    def __init__(self, accounts: List[str], chain_id: int = 1337, wallet_kind: Optional[str] = "metamask"):
        super().__init__(wallet_kind)
        self.accounts = list(accounts)
        self.chain_id = chain_id
        self.requests: List[str] = []

    async def request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        self.requests.append(method)
        if method in (ETH_REQUEST_ACCOUNTS, ETH_ACCOUNTS):
            return list(self.accounts)
        if method == ETH_CHAIN_ID:
            return hex(self.chain_id)
        raise ProviderRpcError(UNSUPPORTED_METHOD, f"Unsupported method: {method}")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def wallet_account():
    return Account.create()


@pytest.fixture
def other_account():
    return Account.create()


@pytest.fixture
def provider(wallet_account, other_account):
    return LocalAccountProvider([wallet_account, other_account], chain_id=1337)


@pytest.fixture
def environment(provider):
    return ClientEnvironment(
        user_agent=DESKTOP_USER_AGENT,
        location="https://app.example.com/stake",
        providers={ETHEREUM_NAMESPACE: provider}
    )


@pytest.fixture
def backend():
    return InMemoryAccountBackend()


@pytest.fixture
def runtime(storage, environment, backend, clock):
    return build_auth_runtime(
        storage,
        environment=environment,
        backend=backend,
        clock=clock,
        deep_link_timeout=0,
        reconnect_delay=0
    )
