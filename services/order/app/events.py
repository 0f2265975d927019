"""
Order Service - イベント定義

注文の作成はイベントとして order_events チャネルに通知する。
イベントは過去形で命名し、不変(immutable)として扱う。
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel

from .aggregate import Order


class OrderCreated(BaseModel):
    """注文が作成された"""
    order_id: UUID
    email: str
    first_name: str
    last_name: str
    product_id: str
    timestamp: datetime

    @classmethod
    def from_order(cls, order: Order) -> "OrderCreated":
        return cls(
            order_id=order.order_id,
            email=order.email,
            first_name=order.first_name,
            last_name=order.last_name,
            product_id=order.product_id,
            timestamp=order.created_at,
        )
