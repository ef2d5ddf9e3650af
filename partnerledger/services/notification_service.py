import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from partnerledger.config import Settings
from partnerledger.providers.queue.events import (
    LedgerEventType,
    LedgerNotificationEvent,
)
from partnerledger.providers.queue.sqs import SQSClient

logger = logging.getLogger(__name__)


class NotificationService:
    """원장 이벤트 알림 발행

    커밋 이후에만 호출되며, 발행 실패는 로그로 남기고 호출자에게 전파하지 않는다.
    실제 전달(푸시/메일)은 큐 소비자 소관.
    """

    def __init__(self, settings: Settings, sqs_client: Optional[SQSClient] = None):
        self.settings = settings
        self._sqs_client = sqs_client

    @property
    def sqs_client(self) -> SQSClient:
        if self._sqs_client is None:
            self._sqs_client = SQSClient(self.settings)
        return self._sqs_client

    def notify(
        self,
        user_id: int,
        event_type: LedgerEventType,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        if not self.settings.NOTIFICATIONS_ENABLED:
            return

        try:
            event = LedgerNotificationEvent(
                user_id=user_id,
                event_type=event_type,
                payload=payload or {},
                occurred_at=datetime.now(timezone.utc),
            )

            queue_name = self.settings.SQS_NOTIFICATION_QUEUE
            if not queue_name:
                logger.info(
                    f"Notification {event.event_type.value} for user {user_id}: {event.payload}"
                )
                return

            self.sqs_client.send_message(queue_name, event.model_dump(mode="json"))
            logger.debug(f"Published {event.event_type.value} for user {user_id}")
        except Exception as e:
            logger.error(
                f"Failed to publish notification {event_type} for user {user_id}: {str(e)}"
            )

    def notify_many(
        self,
        user_ids: Iterable[int],
        event_type: LedgerEventType,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        for user_id in user_ids:
            self.notify(user_id, event_type, payload)
