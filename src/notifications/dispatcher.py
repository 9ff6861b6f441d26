"""Push dispatch: preference gate, device targets, channels and delivery logs."""

import logging
from datetime import datetime, timezone
from typing import Optional

from src.notifications.channels import PushChannels, is_permanent_failure, to_push_target
from src.notifications.config import (
    DEFAULT_NOTIFICATION_CONFIG,
    NotificationConfig,
    PushChannelKind,
)
from src.notifications.datastore import Datastore
from src.notifications.delivery_log import DeliveryLog
from src.notifications.devices import DeviceRegistry
from src.notifications.errors import ChannelError
from src.notifications.models import (
    ChannelSendResult,
    DevicePushTarget,
    DispatchReport,
    MobilePushTarget,
    Notification,
    PushContent,
    WebPushTarget,
)
from src.notifications.preferences import PreferenceGate
from src.notifications.rendering import render_push_content

logger = logging.getLogger(__name__)


class PushDispatcher:
    """Delivers one notification as push to every eligible device.

    Push is best-effort: failures for one user or one target are logged and
    never stop the remaining users or targets.
    """

    def __init__(
        self,
        datastore: Datastore,
        channels: Optional[PushChannels] = None,
        preferences: Optional[PreferenceGate] = None,
        devices: Optional[DeviceRegistry] = None,
        delivery_log: Optional[DeliveryLog] = None,
        config: Optional[NotificationConfig] = None,
    ):
        self.config = config or DEFAULT_NOTIFICATION_CONFIG
        self.datastore = datastore
        self.channels = channels or PushChannels(config=self.config)
        self.preferences = preferences or PreferenceGate(datastore)
        self.devices = devices or DeviceRegistry(datastore)
        self.delivery_log = delivery_log or DeliveryLog(datastore, self.config)

    async def dispatch(self, notification: Notification) -> DispatchReport:
        """Send push for a notification and return what happened."""
        report = DispatchReport(notification_id=notification.id)

        if notification.target_user_id is not None:
            recipients = [notification.target_user_id]
        else:
            recipients = await self.datastore.list_active_user_ids()
        report.recipients = len(recipients)

        content = render_push_content(notification.type, notification.payload)
        data = {"notificationId": notification.id, "type": notification.type}

        for user_id in recipients:
            try:
                await self._dispatch_to_user(notification, user_id, content, data, report)
            except Exception as exc:
                report.user_errors += 1
                logger.error(
                    "Push dispatch of %s to %s failed: %s", notification.id, user_id, exc,
                )

        report.finished_at = datetime.now(timezone.utc)
        logger.info(
            "Push dispatch %s: %d sent, %d failed, %d deactivated, %d skipped",
            notification.id, report.sent, report.failed, report.deactivated,
            report.skipped_by_preferences + report.skipped_no_targets,
        )
        return report

    async def _dispatch_to_user(
        self,
        notification: Notification,
        user_id: str,
        content: PushContent,
        data: dict,
        report: DispatchReport,
    ) -> None:
        if not await self.preferences.should_deliver_push(user_id, notification.type):
            report.skipped_by_preferences += 1
            logger.debug("Push for %s disabled by %s", notification.type, user_id)
            return

        targets = await self.devices.get_user_devices(user_id, active_only=True)
        if not targets:
            report.skipped_no_targets += 1
            return

        by_id = {t.id: t for t in targets}
        mobile: list[MobilePushTarget] = []
        web: list[WebPushTarget] = []
        results: list[tuple[PushChannelKind, ChannelSendResult]] = []

        for target in targets:
            try:
                push_target = to_push_target(target)
            except ChannelError as exc:
                results.append((target.channel, ChannelSendResult(
                    target_id=target.id,
                    success=False,
                    error_code=exc.channel_code,
                    error_message=exc.message,
                )))
                continue
            if isinstance(push_target, MobilePushTarget):
                mobile.append(push_target)
            else:
                web.append(push_target)

        if mobile:
            try:
                for result in await self.channels.send_mobile(mobile, content, data):
                    results.append((PushChannelKind.MOBILE, result))
            except Exception as exc:
                logger.error("Mobile push for %s failed: %s", user_id, exc)
                results.extend(
                    (PushChannelKind.MOBILE, ChannelSendResult(
                        target_id=t.target_id, success=False, error_message=str(exc),
                    ))
                    for t in mobile
                )

        for target in web:
            try:
                result = await self.channels.send_web(target, content, data)
            except Exception as exc:
                logger.error("Web push to %s failed: %s", target.target_id, exc)
                result = ChannelSendResult(
                    target_id=target.target_id, success=False, error_message=str(exc),
                )
            results.append((PushChannelKind.WEB, result))

        for kind, result in results:
            await self._record(notification, by_id[result.target_id], kind, result, report)

    async def _record(
        self,
        notification: Notification,
        target: DevicePushTarget,
        kind: PushChannelKind,
        result: ChannelSendResult,
        report: DispatchReport,
    ) -> None:
        if result.success:
            report.sent += 1
        else:
            report.failed += 1
            logger.warning(
                "Push to target %s failed: %s (%s)",
                target.id, result.error_message, result.error_code,
            )

        try:
            await self.delivery_log.record(
                notification.id,
                target,
                result.success,
                error_code=result.error_code,
                error_message=result.error_message,
            )
        except Exception as exc:
            logger.error("Failed to log push delivery for %s: %s", target.id, exc)

        if not result.success and is_permanent_failure(kind, result.error_code):
            try:
                if await self.devices.deactivate_device(target.id):
                    report.deactivated += 1
            except Exception as exc:
                logger.error("Failed to deactivate target %s: %s", target.id, exc)
