"""Push delivery channels.

Two closed channel kinds:

* mobile: the Expo push API over HTTP, batched;
* web: the browser Web Push protocol with VAPID, one request per subscription.
"""

import asyncio
import json
import logging
from typing import Any, Optional, Sequence

import httpx
from pywebpush import WebPushException, webpush

from src.notifications.config import (
    DEFAULT_NOTIFICATION_CONFIG,
    INVALID_TOKEN_ERRORS,
    NotificationConfig,
    PushChannelKind,
)
from src.notifications.errors import ChannelError
from src.notifications.models import (
    ChannelSendResult,
    DevicePushTarget,
    MobilePushTarget,
    PushContent,
    PushTarget,
    WebPushTarget,
)

logger = logging.getLogger(__name__)

INVALID_SUBSCRIPTION = "InvalidSubscription"


def to_push_target(target: DevicePushTarget) -> PushTarget:
    """Convert a registered device token into a channel target.

    Raises:
        ChannelError: a web token that is not a push subscription (permanent).
    """
    if target.channel == PushChannelKind.MOBILE:
        return MobilePushTarget(target_id=target.id, token=target.token)

    try:
        subscription = json.loads(target.token)
    except (TypeError, ValueError) as exc:
        raise ChannelError(
            f"Web push token is not valid JSON: {exc}",
            channel_code=INVALID_SUBSCRIPTION,
            permanent=True,
        ) from exc

    keys = subscription.get("keys") if isinstance(subscription, dict) else None
    if (
        not isinstance(keys, dict)
        or not subscription.get("endpoint")
        or not keys.get("p256dh")
        or not keys.get("auth")
    ):
        raise ChannelError(
            "Web push subscription requires endpoint and keys.p256dh/keys.auth",
            channel_code=INVALID_SUBSCRIPTION,
            permanent=True,
        )
    return WebPushTarget(target_id=target.id, subscription=subscription)


def is_permanent_failure(kind: PushChannelKind, error_code: Optional[str]) -> bool:
    """Check whether a channel error code means the token is dead."""
    return error_code is not None and error_code in INVALID_TOKEN_ERRORS[kind]


class ExpoPushChannel:
    """Mobile push through the Expo push service."""

    def __init__(
        self,
        config: Optional[NotificationConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or DEFAULT_NOTIFICATION_CONFIG
        self._client = client
        self._owns_client = client is None

    @property
    def kind(self) -> PushChannelKind:
        return PushChannelKind.MOBILE

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {
                "Accept": "application/json",
                "Accept-Encoding": "gzip, deflate",
                "Content-Type": "application/json",
                **self.config.extra_headers,
            }
            if self.config.expo_access_token:
                headers["Authorization"] = f"Bearer {self.config.expo_access_token}"
            self._client = httpx.AsyncClient(
                timeout=self.config.send_timeout_seconds, headers=headers,
            )
        return self._client

    def _message(self, target: MobilePushTarget, content: PushContent, data: dict) -> dict:
        return {
            "to": target.token,
            "sound": self.config.push_sound,
            "title": content.title,
            "body": content.body,
            "data": {**data, "deepLink": content.deep_link},
            "priority": self.config.push_priority,
            "badge": self.config.badge,
        }

    async def send_batch(
        self,
        targets: Sequence[MobilePushTarget],
        content: PushContent,
        data: Optional[dict] = None,
    ) -> list[ChannelSendResult]:
        """Send to many tokens, one request per batch.

        A batch whose request fails is retried target by target.
        """
        data = data or {}
        results: list[ChannelSendResult] = []
        size = max(1, self.config.mobile_batch_size)

        for start in range(0, len(targets), size):
            chunk = list(targets[start:start + size])
            try:
                tickets = await self._post([self._message(t, content, data) for t in chunk])
                if len(tickets) != len(chunk):
                    raise ChannelError(
                        f"Expo returned {len(tickets)} tickets for {len(chunk)} messages"
                    )
            except ChannelError as exc:
                logger.warning(
                    "Expo batch of %d failed (%s), sending individually", len(chunk), exc.message,
                )
                for target in chunk:
                    results.append(await self.send(target, content, data))
                continue

            results.extend(self._ticket_result(t, ticket) for t, ticket in zip(chunk, tickets))

        return results

    async def send(
        self,
        target: MobilePushTarget,
        content: PushContent,
        data: Optional[dict] = None,
    ) -> ChannelSendResult:
        """Send to a single token."""
        try:
            tickets = await self._post([self._message(target, content, data or {})])
        except ChannelError as exc:
            return ChannelSendResult(
                target_id=target.target_id,
                success=False,
                error_code=exc.channel_code,
                error_message=exc.message,
            )
        if not tickets:
            return ChannelSendResult(
                target_id=target.target_id,
                success=False,
                error_message="Invalid response from Expo push service",
            )
        return self._ticket_result(target, tickets[0])

    async def _post(self, messages: list[dict]) -> list[dict]:
        try:
            response = await self._get_client().post(self.config.expo_push_url, json=messages)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as exc:
            raise ChannelError(
                f"Expo push service returned HTTP {exc.response.status_code}",
                channel_code=str(exc.response.status_code),
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise ChannelError(f"Expo push request failed: {exc}") from exc

        tickets = body.get("data") if isinstance(body, dict) else None
        if isinstance(tickets, dict):
            tickets = [tickets]
        if not isinstance(tickets, list):
            errors = body.get("errors") if isinstance(body, dict) else None
            raise ChannelError(f"Invalid response from Expo push service: {errors or body!r}")
        return tickets

    @staticmethod
    def _ticket_result(target: MobilePushTarget, ticket: Any) -> ChannelSendResult:
        if isinstance(ticket, dict) and ticket.get("status") == "ok":
            return ChannelSendResult(
                target_id=target.target_id, success=True, message_id=ticket.get("id"),
            )

        ticket = ticket if isinstance(ticket, dict) else {}
        message = ticket.get("message") or "Unknown error"
        code = (ticket.get("details") or {}).get("error")
        if code is None:
            code = next(
                (c for c in INVALID_TOKEN_ERRORS[PushChannelKind.MOBILE] if c in message),
                None,
            )
        return ChannelSendResult(
            target_id=target.target_id,
            success=False,
            error_code=code,
            error_message=message,
        )

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


class WebPushChannel:
    """Browser push through the Web Push protocol (pywebpush)."""

    def __init__(self, config: Optional[NotificationConfig] = None):
        self.config = config or DEFAULT_NOTIFICATION_CONFIG

    @property
    def kind(self) -> PushChannelKind:
        return PushChannelKind.WEB

    def is_configured(self) -> bool:
        return bool(self.config.vapid_private_key)

    async def send(
        self,
        target: WebPushTarget,
        content: PushContent,
        data: Optional[dict] = None,
    ) -> ChannelSendResult:
        """Send to one subscription. pywebpush is blocking, so it runs in a thread."""
        if not self.is_configured():
            return ChannelSendResult(
                target_id=target.target_id,
                success=False,
                error_message="VAPID private key is not configured",
            )

        payload = json.dumps({
            "title": content.title,
            "body": content.body,
            "data": {**(data or {}), "url": content.deep_link},
        })
        try:
            response = await asyncio.to_thread(
                webpush,
                subscription_info=target.subscription,
                data=payload,
                vapid_private_key=self.config.vapid_private_key,
                vapid_claims={"sub": self.config.vapid_subject},
                ttl=self.config.web_push_ttl_seconds,
                timeout=self.config.send_timeout_seconds,
            )
        except WebPushException as exc:
            status = getattr(exc.response, "status_code", None) if exc.response is not None else None
            return ChannelSendResult(
                target_id=target.target_id,
                success=False,
                error_code=str(status) if status is not None else None,
                error_message=str(exc),
            )
        except Exception as exc:
            logger.warning("Web push to %s failed: %s", target.endpoint[:40], exc)
            return ChannelSendResult(
                target_id=target.target_id, success=False, error_message=str(exc),
            )

        return ChannelSendResult(
            target_id=target.target_id,
            success=True,
            message_id=getattr(response, "headers", {}).get("Location") if response is not None else None,
        )


class PushChannels:
    """One send method per channel kind."""

    def __init__(
        self,
        mobile: Optional[ExpoPushChannel] = None,
        web: Optional[WebPushChannel] = None,
        config: Optional[NotificationConfig] = None,
    ):
        config = config or DEFAULT_NOTIFICATION_CONFIG
        self.mobile = mobile or ExpoPushChannel(config)
        self.web = web or WebPushChannel(config)

    async def send_mobile(
        self, targets: Sequence[MobilePushTarget], content: PushContent, data: dict,
    ) -> list[ChannelSendResult]:
        if not targets:
            return []
        return await self.mobile.send_batch(targets, content, data)

    async def send_web(
        self, target: WebPushTarget, content: PushContent, data: dict,
    ) -> ChannelSendResult:
        return await self.web.send(target, content, data)

    async def close(self) -> None:
        await self.mobile.close()
