"""
Account backend client.

The backend owns accounts and wallet bindings. The flow talks to it only
through AccountBackend; every failure arrives here already translated into an
AuthFlowError kind.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Type
from urllib.parse import quote

import httpx

from src.core.exceptions.base import (
    AlreadyLinkedError,
    AuthFlowError,
    AuthRejectedError,
    InvalidInputError,
    NetworkError,
)
from src.core.http_client import create_client
from src.core.logger.logger import get_logger
from src.core.service.auth.models.account import AccountIdentity, ProfileUpdate
from src.core.service.auth.models.link import LinkProof

logger = get_logger(__name__)


class AccountBackend(ABC):
    """Interface of the account service the flow depends on"""

    def __init__(self):
        self.current_user: Optional[AccountIdentity] = None
        self._pending = 0

    @property
    def is_authenticated(self) -> bool:
        return self.current_user is not None

    @property
    def loading(self) -> bool:
        return self._pending > 0

    @abstractmethod
    async def signup(
        self,
        email: str,
        password: str,
        username: str,
        bio: Optional[str] = None
    ) -> AccountIdentity:
        pass

    @abstractmethod
    async def login(self, email: str, password: str) -> AccountIdentity:
        pass

    @abstractmethod
    async def logout(self) -> None:
        pass

    @abstractmethod
    async def update_profile(self, changes: ProfileUpdate) -> AccountIdentity:
        pass

    @abstractmethod
    async def link_wallet_address(self, address: str, proof: Optional[LinkProof] = None) -> AccountIdentity:
        """Bind `address` to the signed-in account; AlreadyLinkedError if bound elsewhere"""
        pass

    @abstractmethod
    async def check_username_available(self, username: str) -> bool:
        pass


class HttpAccountBackend(AccountBackend):
    """AccountBackend over the account service REST API"""

    def __init__(self, base_url: str, client: Optional[httpx.AsyncClient] = None):
        super().__init__()
        self.base_url = base_url.rstrip("/")
        self._client = client or create_client("account_backend", base_url=self.base_url)
        self._token: Optional[str] = None

    async def signup(
        self,
        email: str,
        password: str,
        username: str,
        bio: Optional[str] = None
    ) -> AccountIdentity:
        body = await self._request(
            "POST",
            "/accounts",
            json={"email": email, "password": password, "username": username, "bio": bio},
            authenticated=False
        )
        return self._start_session(body, email)

    async def login(self, email: str, password: str) -> AccountIdentity:
        body = await self._request(
            "POST",
            "/sessions",
            json={"email": email, "password": password},
            authenticated=False
        )
        return self._start_session(body, email)

    async def logout(self) -> None:
        try:
            if self._token:
                await self._request("DELETE", "/sessions/current")
        finally:
            self._token = None
            self.current_user = None

    async def update_profile(self, changes: ProfileUpdate) -> AccountIdentity:
        body = await self._request("PATCH", "/accounts/me", json=changes.changes())
        return self._refresh_user(body)

    async def link_wallet_address(self, address: str, proof: Optional[LinkProof] = None) -> AccountIdentity:
        payload: Dict[str, Any] = {"address": address}
        if proof is not None:
            payload.update(message=proof.message, signature=proof.signature)
        body = await self._request(
            "POST",
            "/accounts/me/wallet",
            json=payload,
            conflict=AlreadyLinkedError
        )
        return self._refresh_user(body)

    async def check_username_available(self, username: str) -> bool:
        body = await self._request("GET", f"/usernames/{quote(username, safe='')}", authenticated=False)
        return bool(body.get("available"))

    async def aclose(self) -> None:
        await self._client.aclose()

    def _start_session(self, body: Dict[str, Any], email: str) -> AccountIdentity:
        self._token = body.get("token")
        account = AccountIdentity.model_validate(body.get("account") or {})
        if not account.email:
            account = account.model_copy(update={"email": email})
        self.current_user = account
        return account

    def _refresh_user(self, body: Dict[str, Any]) -> AccountIdentity:
        account = AccountIdentity.model_validate(body.get("account") or {})
        self.current_user = account
        return account

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        authenticated: bool = True,
        conflict: Type[AuthFlowError] = AuthRejectedError
    ) -> Dict[str, Any]:
        headers = {}
        if authenticated:
            if not self._token:
                raise AuthRejectedError("Not signed in to an account")
            headers["Authorization"] = f"Bearer {self._token}"

        self._pending += 1
        try:
            response = await self._client.request(method, path, json=json, headers=headers)
        except httpx.HTTPError as e:
            logger.error(
                "Account service request failed",
                extra={"http_method": method, "path": path, "error": str(e)}
            )
            raise NetworkError() from e
        finally:
            self._pending -= 1

        if response.status_code >= 400:
            raise self._rejection(response, method, path, conflict)

        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise NetworkError("Invalid response from account service") from e

    @staticmethod
    def _rejection(
        response: httpx.Response,
        method: str,
        path: str,
        conflict: Type[AuthFlowError]
    ) -> AuthFlowError:
        try:
            message = response.json().get("message")
        except (ValueError, AttributeError):
            message = None

        logger.warning(
            "Account service rejected request",
            extra={
                "http_method": method,
                "path": path,
                "status_code": response.status_code,
                "error": message
            }
        )

        if response.status_code >= 500:
            return NetworkError()
        if response.status_code == 409:
            return conflict(message)
        if response.status_code in (400, 422):
            return InvalidInputError(message)
        return AuthRejectedError(message)
