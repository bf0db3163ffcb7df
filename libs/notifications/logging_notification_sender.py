# libs/notifications/logging_notification_sender.py
from __future__ import annotations

import logging

from libs.notifications.i_notification_sender import INotificationSender
from libs.utils.masking import mask_email, mask_phone

log = logging.getLogger(__name__)


class LoggingNotificationSender(INotificationSender):
    """
    Отправитель по умолчанию: только фиксирует факт постановки в очередь.
    Текст сообщения не логируется, в нём одноразовый код.
    """

    async def send_sms(self, phone: str, message: str) -> bool:
        log.info(f"SMS поставлено в очередь: {mask_phone(phone)}", extra={"event": "notification_sms"})
        return True

    async def send_email(self, to: str, subject: str, body: str) -> bool:
        log.info(
            f"Email '{subject}' поставлен в очередь: {mask_email(to)}",
            extra={"event": "notification_email"},
        )
        return True
