import asyncio
from typing import Any, Dict, Optional

import aiohttp
from loguru import logger

from core.domain.entities import UserProfile, normalize_email
from core.domain.exceptions import DirectoryFailure
from core.interfaces.services import IUserDirectory


class HttpUserDirectory(IUserDirectory):
    """User directory served by `GET {base_url}/api/users`.

    The endpoint answers `{"user": {...}}`, or 404 when the user is unknown.
    """

    def __init__(self, base_url: str, api_key: Optional[str] = None, timeout: float = 8.0,
                 session: Optional[aiohttp.ClientSession] = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session

    async def get_user_profile(self, user_id: str) -> Optional[UserProfile]:
        return await self._get_user({"userId": user_id})

    async def find_user_by_email(self, email: str) -> Optional[UserProfile]:
        return await self._get_user({"email": normalize_email(email)})

    async def get_wallet_for_chain(self, user_id: str, chain: str) -> Optional[str]:
        profile = await self.get_user_profile(user_id)
        if profile is None:
            return None
        return profile.wallet_for_chain(chain)

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def _get_user(self, params: Dict[str, str]) -> Optional[UserProfile]:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        url = f"{self.base_url}/api/users"
        try:
            async with self._get_session().get(url, params=params, headers=headers) as response:
                if response.status == 404:
                    return None
                if response.status != 200:
                    text = await response.text()
                    raise DirectoryFailure(f"User directory returned {response.status}: {text[:200]}")
                data = await response.json()
        except aiohttp.ClientError as e:
            logger.warning(f"User directory request {params} failed: {e}")
            raise DirectoryFailure(f"User directory unavailable: {e}")
        except asyncio.TimeoutError:
            raise DirectoryFailure("User directory timeout")

        user = data.get("user") if isinstance(data, dict) else None
        return self.parse_user(user) if user else None

    @staticmethod
    def parse_user(user: Dict[str, Any]) -> UserProfile:
        return UserProfile(
            user_id=str(user.get("userId", "")),
            email=normalize_email(user.get("email", "")),
            display_name=user.get("displayName"),
            wallets={k: v for k, v in (user.get("wallets") or {}).items() if v},
            is_verified=bool(user.get("isVerified", user.get("emailVerified", False))),
        )


class StaticUserDirectory(IUserDirectory):
    """Directory backed by a dict, used in mock mode and tests."""

    def __init__(self, users: Optional[Dict[str, UserProfile]] = None):
        self.users: Dict[str, UserProfile] = dict(users or {})

    def add(self, profile: UserProfile) -> None:
        self.users[profile.user_id] = profile

    async def get_user_profile(self, user_id: str) -> Optional[UserProfile]:
        return self.users.get(user_id)

    async def find_user_by_email(self, email: str) -> Optional[UserProfile]:
        email = normalize_email(email)
        for profile in self.users.values():
            if normalize_email(profile.email) == email:
                return profile
        return None

    async def get_wallet_for_chain(self, user_id: str, chain: str) -> Optional[str]:
        profile = self.users.get(user_id)
        return profile.wallet_for_chain(chain) if profile else None
