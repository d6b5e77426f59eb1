"""Registration and invalidation of push endpoints."""

from __future__ import annotations

import datetime
import logging
from typing import TYPE_CHECKING, Iterable, Optional

from ..utils.datetime_utils import utc_now
from .models import DeviceToken, DeviceType

if TYPE_CHECKING:
    from ..repository import TaskflowRepository, WriteBatch

logger = logging.getLogger(__name__)


class DeviceTokenRegistry:
    """Manage the device tokens push notifications are addressed to."""

    def __init__(self, repository: TaskflowRepository):
        self._repository = repository

    async def register_device_token(
        self,
        owner_id: str,
        token: str,
        device_type: DeviceType | str = DeviceType.WEB,
        *,
        now: Optional[datetime.datetime] = None,
    ) -> DeviceToken:
        """Store a token for a user; registering again reactivates it."""

        moment = now or utc_now()
        existing = await self._repository.get_device_token(owner_id, token)
        device_token = DeviceToken(
            owner_id=owner_id,
            token=token,
            device_type=DeviceType(device_type),
            is_active=True,
            created_at=existing.created_at if existing else moment,
            last_used=moment,
        )
        await self._repository.upsert_device_token(device_token)
        logger.info(
            "Registered %s device token for user %s",
            device_token.device_type.value,
            owner_id,
        )
        return device_token

    async def unregister_device_token(
        self,
        owner_id: str,
        token: str,
        *,
        now: Optional[datetime.datetime] = None,
    ) -> bool:
        """Deactivate a user's token. Returns False when it is unknown."""

        if await self._repository.get_device_token(owner_id, token) is None:
            return False
        batch = self._repository.batch()
        batch.update_device_token(
            owner_id, token, is_active=False, last_used=now or utc_now()
        )
        await self._repository.commit(batch)
        return True

    async def list_active_tokens(self, owner_id: str) -> list[str]:
        tokens = await self._repository.list_active_tokens(owner_id)
        return [device.token for device in tokens]

    async def deactivate_tokens(
        self,
        tokens: Iterable[str],
        batch: WriteBatch | None = None,
    ) -> int:
        """Deactivate every row holding one of ``tokens``, whoever owns it.

        With ``batch`` the updates are only staged; otherwise they are
        committed immediately. Returns the number of rows deactivated.
        """

        unique = sorted(set(tokens))
        if not unique:
            return 0

        target = batch if batch is not None else self._repository.batch()
        count = 0
        for token in unique:
            for device in await self._repository.find_tokens_by_value(token):
                if not device.is_active:
                    continue
                target.update_device_token(device.owner_id, device.token, is_active=False)
                count += 1

        if batch is None and count:
            await self._repository.commit(target)
        if count:
            logger.info("Deactivating %d invalid device token(s)", count)
        return count


__all__ = ["DeviceTokenRegistry"]
