"""
SMS provider client.

The provider keeps scheduled messages itself; we only hand over the
delivery time and remember the batch id it returns so the message can be
deleted again.
"""

import logging
from datetime import datetime

import httpx
from pydantic import BaseModel

from appointments import config
from appointments.errors import ProviderError

logger = logging.getLogger(__name__)


class SmsResult(BaseModel):
    status: str
    batch_id: str | None = None


def normalize_phone(phone: str | None) -> str | None:
    """Provider numbers carry no leading '+'."""
    if not phone:
        return None
    return phone.strip().replace("+", "") or None


def format_scheduled(scheduled: datetime) -> str:
    # Wall-clock time in the zone the caller chose, without offset.
    return scheduled.replace(tzinfo=None).isoformat(timespec="milliseconds")


class SmsClient:
    def __init__(
        self,
        base_url: str = config.SMS_API_URL,
        token: str | None = config.SMS_API_TOKEN,
        sender_name: str = config.SMS_SENDER_NAME,
        timeout: float = config.SMS_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not token:
            logger.warning("SMS_API_TOKEN is not set, provider calls will be rejected")
        self.sender_name = sender_name
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "content-type": "application/json",
                "Authorization": f"Bearer {token or ''}",
            },
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def send(
        self, receiver: str, message: str, scheduled: datetime | None = None
    ) -> SmsResult:
        payload = {
            "receiver": receiver,
            "message": message,
            "senderName": self.sender_name,
            "scheduled": format_scheduled(scheduled) if scheduled else None,
        }
        try:
            response = await self._client.post("/sms/send", json=payload)
            response.raise_for_status()
            data = response.json()
            batch_id = (data.get("result") or {}).get("batchId")
            result = SmsResult(
                status=str(data["status"]),
                batch_id=str(batch_id) if batch_id is not None else None,
            )
        except httpx.HTTPError as exc:
            logger.error("SMS send to %s failed: %s", receiver, exc)
            raise ProviderError(f"SMS provider failed: {exc}") from exc
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.error("SMS send to %s returned an unreadable response: %s", receiver, exc)
            raise ProviderError(f"SMS provider returned an invalid response: {exc}") from exc

        logger.info("SMS to %s accepted: status=%s batch=%s", receiver, result.status, result.batch_id)
        return result

    async def delete(self, batch_id: str) -> None:
        try:
            response = await self._client.delete("/sms/delete", params={"batchId": batch_id})
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("SMS delete of batch %s failed: %s", batch_id, exc)
            raise ProviderError(f"SMS provider failed to delete batch {batch_id}: {exc}") from exc
        logger.info("SMS batch %s deleted", batch_id)
