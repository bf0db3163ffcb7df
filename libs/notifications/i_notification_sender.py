# libs/notifications/i_notification_sender.py
from __future__ import annotations
from abc import ABC, abstractmethod


class INotificationSender(ABC):
    """
    Внешний канал доставки SMS/email. Отправка fire-and-forget:
    метод возвращает True, как только сообщение принято к доставке.
    """

    @abstractmethod
    async def send_sms(self, phone: str, message: str) -> bool: ...

    @abstractmethod
    async def send_email(self, to: str, subject: str, body: str) -> bool: ...
