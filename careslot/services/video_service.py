"""
Video room provisioning (Daily.co).

Rooms are created after payment confirmation, best effort. Callers check the
appointment's `room_reference` before asking for a new room, and the room name is
derived from the appointment, so a retried provisioning never creates a second room.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import httpx

from careslot.core.config import settings
from careslot.utils.errors import GatewayError
from careslot.utils.timeutils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class RoomInfo:
    room_id: str
    join_url: str


class RoomProvisioner(ABC):

    @abstractmethod
    async def create_room(
        self,
        appointment_id: int,
        duration_minutes: int,
        expires_at: Optional[datetime] = None,
    ) -> RoomInfo:
        ...

    @abstractmethod
    async def create_meeting_token(self, room_id: str, user_id: int, is_owner: bool = False) -> str:
        ...


class RoomExistsError(GatewayError):
    """Daily.co refused to create a room because one with that name exists."""


class DailyRoomProvisioner(RoomProvisioner):

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key or settings.DAILY_API_KEY
        self.base_url = (base_url or settings.DAILY_API_BASE).rstrip("/")
        self.timeout = timeout or settings.GATEWAY_TIMEOUT_SECONDS
        self._transport = transport

    async def _send(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        retry: bool = False,
    ) -> Dict[str, Any]:
        if not self.api_key:
            raise GatewayError("Video service is not configured")

        attempts = 2 if retry else 1
        for attempt in range(1, attempts + 1):
            try:
                async with httpx.AsyncClient(
                    base_url=self.base_url,
                    timeout=self.timeout,
                    transport=self._transport,
                ) as client:
                    response = await client.request(
                        method,
                        path,
                        json=payload,
                        headers={"Authorization": f"Bearer {self.api_key}"},
                    )
                if response.status_code == 400 and "already exists" in response.text:
                    raise RoomExistsError(response.text)
                response.raise_for_status()
                return response.json()
            except httpx.HTTPError as e:
                logger.warning(f"Daily.co {method} {path} failed (attempt {attempt}/{attempts}): {e}")
                if attempt >= attempts:
                    raise GatewayError(f"Daily.co API error: {e}") from e

        raise GatewayError("Daily.co request failed")

    async def create_room(
        self,
        appointment_id: int,
        duration_minutes: int,
        expires_at: Optional[datetime] = None,
    ) -> RoomInfo:
        """
        Create the appointment's room. Room names are derived from the appointment,
        so a room left over from an attempt whose result was never saved is reused.
        """
        name = f"appointment-{appointment_id}"
        expires_at = expires_at or utcnow() + timedelta(minutes=duration_minutes + 60)
        try:
            data = await self._send(
                "POST",
                "/rooms",
                {
                    "name": name,
                    "privacy": "private",
                    "properties": {
                        "exp": int(expires_at.timestamp()),
                        "enable_chat": True,
                        "enable_screenshare": True,
                    },
                },
            )
        except RoomExistsError:
            logger.info(f"Daily.co room {name} already exists, reusing it")
            data = await self._send("GET", f"/rooms/{name}", retry=True)
        return RoomInfo(room_id=data["name"], join_url=data["url"])

    async def create_meeting_token(self, room_id: str, user_id: int, is_owner: bool = False) -> str:
        data = await self._send(
            "POST",
            "/meeting-tokens",
            {
                "properties": {
                    "room_name": room_id,
                    "user_id": str(user_id),
                    "is_owner": is_owner,
                    "exp": int((utcnow() + timedelta(hours=1)).timestamp()),
                },
            },
            retry=True,
        )
        return data["token"]
