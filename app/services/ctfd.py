"""Client for the external challenge platform (CTFd) used to verify solved tasks."""

import logging
from typing import Dict, Optional

import httpx

from app.config import settings
from app.errors import ExternalServiceError, NotFoundError

logger = logging.getLogger(__name__)


class CTFdClient:
    """Answers "has this user solved challenge X" against the CTFd admin API.

    Remote user ids are cached per email for the lifetime of the instance;
    solve status is always fetched fresh.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.transport = transport
        self._remote_ids: Dict[str, int] = {}

    def _headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Token {self.token}",
        }

    async def _get(self, path: str, params: dict, action: str) -> dict:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._headers(),
                timeout=self.timeout,
                transport=self.transport,
            ) as client:
                response = await client.get(path, params=params)
                response.raise_for_status()
                return response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("CTFd request failed during %s: %s", action, exc)
            raise ExternalServiceError(f"{action} failed: challenge platform unavailable") from exc

    @staticmethod
    def _total(payload: dict, action: str) -> int:
        try:
            return int(payload["meta"]["pagination"]["total"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ExternalServiceError(f"{action} failed: unexpected response shape") from exc

    async def resolve_remote_identity(self, email: str) -> int:
        """Return the CTFd user id registered with `email`; NotFoundError if none."""
        if email in self._remote_ids:
            return self._remote_ids[email]

        action = "CTFd user lookup"
        payload = await self._get("/users", {"view": "admin", "field": "email", "q": email}, action)
        if self._total(payload, action) == 0 or not payload.get("data"):
            raise NotFoundError("CTFd user not found")

        remote_id = int(payload["data"][0]["id"])
        self._remote_ids[email] = remote_id
        return remote_id

    async def is_solved(self, challenge_id: int, remote_user_id: int) -> bool:
        action = "CTFd solve status check"
        payload = await self._get(
            "/submissions",
            {"challenge_id": challenge_id, "user_id": remote_user_id, "type": "correct"},
            action,
        )
        return self._total(payload, action) != 0

    async def is_solved_by_email(self, challenge_id: int, email: str) -> bool:
        """Solve status for a local user; a user unknown to CTFd has solved nothing."""
        try:
            remote_user_id = await self.resolve_remote_identity(email)
        except NotFoundError:
            logger.warning("No CTFd account for %s; treating challenge %s as unsolved", email, challenge_id)
            return False
        return await self.is_solved(challenge_id, remote_user_id)


_default_client: Optional[CTFdClient] = None


def get_ctfd_client() -> CTFdClient:
    """Process-wide client built from settings (keeps the identity cache warm)."""
    global _default_client
    if _default_client is None:
        _default_client = CTFdClient(
            settings.CTFD_API_URL,
            settings.CTFD_TOKEN,
            timeout=settings.CTFD_TIMEOUT_SECONDS,
        )
    return _default_client
