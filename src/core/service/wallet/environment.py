import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional
from urllib.parse import urlparse

from src.core.logger.logger import get_logger
from src.core.service.wallet.providers import EthereumProvider

logger = get_logger(__name__)

MOBILE_USER_AGENT_PATTERN = re.compile(
    r"Android|webOS|iPhone|iPad|iPod|BlackBerry|IEMobile|Opera Mini",
    re.IGNORECASE
)

# Provider namespaces, as wallets inject them
ETHEREUM_NAMESPACE = "ethereum"
WALLETCONNECT_NAMESPACE = "walletconnect"
COINBASE_EXTENSION_NAMESPACE = "coinbaseWalletExtension"


def _log_navigation(url: str) -> None:
    logger.info("Navigation requested", extra={"url": url})


@dataclass
class ClientEnvironment:
    """
    What the page knows about its host: user agent, location, focus, and the
    wallet providers injected into it.
    """
    user_agent: str = ""
    location: str = "http://localhost:3000/"
    providers: Dict[str, EthereumProvider] = field(default_factory=dict)
    has_focus: Callable[[], bool] = lambda: True
    open_url: Callable[[str], None] = _log_navigation
    opened_urls: List[str] = field(default_factory=list)

    def is_mobile(self) -> bool:
        return bool(MOBILE_USER_AGENT_PATTERN.search(self.user_agent or ""))

    @property
    def ethereum(self) -> Optional[EthereumProvider]:
        return self.providers.get(ETHEREUM_NAMESPACE)

    @property
    def host(self) -> str:
        return urlparse(self.location).netloc

    @property
    def path(self) -> str:
        return urlparse(self.location).path or "/"

    def navigate(self, url: str) -> None:
        self.opened_urls.append(url)
        self.open_url(url)
