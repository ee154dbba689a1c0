import json
import logging
from aiokafka import AIOKafkaProducer

from order_tracking.domain.models import Order
from order_tracking.application.interfaces import UpdatePublisher

logger = logging.getLogger(__name__)


class KafkaOrderEventsPublisher(UpdatePublisher):
    def __init__(self, bootstrap_servers: str, topic: str = "storefront.order.events", producer=None):
        self._bootstrap_servers = bootstrap_servers
        self._producer: AIOKafkaProducer | None = producer
        self._topic = topic

    async def start(self):
        if not self._producer:
            self._producer = AIOKafkaProducer(
                bootstrap_servers=self._bootstrap_servers
            )
        await self._producer.start()
        logger.info("Kafka producer started")

    async def stop(self):
        if self._producer:
            await self._producer.stop()
            self._producer = None
            logger.info("Kafka producer stopped")

    @staticmethod
    def build_event(order: Order) -> dict:
        return {
            "event_type": "order.status_changed",
            "order_id": order.id,
            "order_number": order.order_number,
            "status": order.status.value,
            "timeline_sequence": order.timeline[-1].sequence,
            "tracking_number": order.tracking_number,
            "updated_at": order.updated_at.isoformat(),
        }

    async def publish(self, order: Order) -> bool:
        if not self._producer:
            logger.error("Kafka producer not started")
            return False

        try:
            await self._producer.send_and_wait(
                topic=self._topic,
                key=order.id.encode(),
                value=json.dumps(self.build_event(order)).encode()
            )
            logger.info(f"Published order.status_changed for order {order.id} ({order.status.value})")
            return True

        except Exception as e:
            logger.error(f"Failed to publish order.status_changed: {e}")
            return False
