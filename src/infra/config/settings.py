from typing import List, Optional
from pydantic_settings import BaseSettings
from functools import lru_cache

class Settings(BaseSettings):
    # App Settings
    APP_NAME: str = "DeFiStakingAuth"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # Server Settings
    HOST: str = "0.0.0.0"
    PORT: int = 8080

    # CORS
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",  # Dashboard development
        "http://localhost:5173",  # Vite dev server
    ]

    # Redis Settings
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_MAX_CONNECTIONS: int = 10

    # Session Persistence
    SESSION_BACKEND: str = "redis"  # redis or memory
    SESSION_STORAGE_KEY: str = "defi-staking-auth"
    SESSION_TTL_HOURS: int = 24

    # Wallet Connection
    DEEP_LINK_TIMEOUT_SECONDS: float = 3.0
    ACCOUNT_SWITCH_RECONNECT_DELAY_SECONDS: float = 1.0
    WALLET_RPC_URL: Optional[str] = None  # Wallet bridge JSON-RPC endpoint
    WALLET_PROVIDER_KIND: str = "metamask"  # Capability flag advertised by the bridge
    CLIENT_USER_AGENT: str = ""
    CLIENT_LOCATION: str = "http://localhost:3000/"

    # Wallet Linking
    LINK_MESSAGE_TITLE: str = "Link wallet to DeFi Staking Platform"
    LINK_CHALLENGE_MAX_AGE_SECONDS: int = 300  # 5 minutes
    LINK_CHALLENGE_MAX_SKEW_SECONDS: int = 30

    # Account Backend
    ACCOUNT_BACKEND_URL: Optional[str] = None
    MIN_PASSWORD_LENGTH: int = 6

    # HTTP Client Settings
    HTTP_DEFAULT_TIMEOUT: float = 10.0
    HTTP_WALLET_RPC_TIMEOUT: float = 30.0
    HTTP_MAX_CONNECTIONS: int = 20
    HTTP_MAX_KEEPALIVE_CONNECTIONS: int = 10

    class Config:
        env_file = ".env"
        case_sensitive = True

@lru_cache()
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
