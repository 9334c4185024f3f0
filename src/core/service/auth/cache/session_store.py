import json
from typing import Optional, Union

from redis.asyncio import Redis
from redis.exceptions import RedisError

from src.core.exceptions.base import MalformedRecordError, NetworkError
from src.core.logger.logger import get_logger
from src.core.service.auth.models.session import AuthSession, PersistedSessionRecord
from src.core.service.auth.utils.clock import Clock, now_ms
from src.core.service.wallet.models import WalletType
from src.infra.config.settings import get_settings
from src.infra.storage.memory import MemoryStorage

logger = get_logger(__name__)
settings = get_settings()


class SessionStore:
    """
    Persisted session record with an expiry policy.

    Exactly one record lives under the storage key. Reads fail closed: a record
    that cannot be parsed is deleted and reported as absent.
    """

    def __init__(
        self,
        storage: Union[Redis, MemoryStorage],
        key: Optional[str] = None,
        ttl_hours: Optional[float] = None,
        clock: Clock = now_ms
    ):
        self.storage = storage
        self.key = key or settings.SESSION_STORAGE_KEY
        ttl = settings.SESSION_TTL_HOURS if ttl_hours is None else ttl_hours
        self.ttl_ms = int(ttl * 60 * 60 * 1000)
        self._clock = clock

    def now(self) -> int:
        return self._clock()

    async def save(
        self,
        session: AuthSession,
        wallet_type: Optional[WalletType] = None
    ) -> PersistedSessionRecord:
        """Persist the session, stamped with the current time"""
        record = PersistedSessionRecord(
            session=session,
            timestamp=self._clock(),
            wallet_type=wallet_type
        )
        try:
            await self.storage.set(self.key, json.dumps(record.to_storage()))
        except RedisError as e:
            logger.error(
                "Failed to save session",
                extra={"key": self.key, "error": str(e)}
            )
            raise NetworkError("Session storage is unavailable") from e

        logger.info(
            "Session saved",
            extra={
                "auth_method": session.auth_method.value,
                "address": session.address,
                "wallet_type": wallet_type.value if wallet_type else None,
                "timestamp": record.timestamp
            }
        )
        return record

    async def load(self) -> Optional[PersistedSessionRecord]:
        """Read the stored record; None when absent or unreadable"""
        try:
            raw = await self.storage.get(self.key)
        except RedisError as e:
            logger.error(
                "Failed to load session",
                extra={"key": self.key, "error": str(e)}
            )
            raise NetworkError("Session storage is unavailable") from e

        if raw is None:
            return None

        try:
            return self.parse_record(raw)
        except MalformedRecordError as e:
            logger.warning(
                "Discarding malformed session record",
                extra={"key": self.key, "kind": e.kind.value, "error": e.message}
            )
            await self.clear()
            return None

    @staticmethod
    def parse_record(raw: Union[str, bytes]) -> PersistedSessionRecord:
        try:
            record = PersistedSessionRecord.model_validate(json.loads(raw))
        except (ValueError, TypeError) as e:
            raise MalformedRecordError(f"Saved session could not be read: {e}") from e

        if not record.session.is_authenticated:
            raise MalformedRecordError("Saved session has no wallet or account")
        return record

    def is_expired(self, record: PersistedSessionRecord) -> bool:
        return self._clock() - record.timestamp > self.ttl_ms

    async def clear(self) -> None:
        try:
            await self.storage.delete(self.key)
        except RedisError as e:
            logger.error(
                "Failed to clear session",
                extra={"key": self.key, "error": str(e)}
            )
            raise NetworkError("Session storage is unavailable") from e

        logger.info("Session cleared", extra={"key": self.key})
