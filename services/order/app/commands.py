"""
Order Service - コマンドハンドラ (Write 側)

注文作成ワークフロー:

  1. 事前チェック  ストアに同じ (email, product_id) があれば DuplicateOrder
  2. 本人確認      ディレクトリで email を照会 (NotFound → EmailNotFound)
  3. 組み立て      ID・作成日時を割り当てた注文候補を作る
  4. コミット      INSERT。UNIQUE 制約違反なら DuplicateOrder
  5. 通知          Redis Pub/Sub に OrderCreated を発行

結果は例外ではなく値 (OrderPlaced / DuplicateOrder / EmailNotFound /
DirectoryUnavailable) として返す。1 と 4 の間に競合があっても、
最終的な判定は 4 の UNIQUE 制約が行う。
"""

import json
import logging

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from . import order_store
from .aggregate import (
    CreateOrderResult,
    DirectoryUnavailable,
    DuplicateKey,
    DuplicateOrder,
    EmailNotFound,
    NotFound,
    Order,
    OrderPlaced,
)
from .directory import DirectoryClient
from .events import OrderCreated

logger = logging.getLogger(__name__)

ORDER_EVENTS_CHANNEL = "order_events"


async def create_order(
    session: AsyncSession,
    directory: DirectoryClient,
    redis: aioredis.Redis | None,
    product_id: str,
    email: str,
) -> CreateOrderResult:
    """注文作成コマンド"""
    # 1. 事前チェック (並行リクエストに対しては不十分、UX のための早期失敗)
    if await order_store.exists(session, email, product_id):
        logger.info("Duplicate order rejected by pre-check: product=%s", product_id)
        return DuplicateOrder(email=email, product_id=product_id)

    # 2. 外部ディレクトリで本人確認
    user = await directory.resolve(email)
    if isinstance(user, NotFound):
        return EmailNotFound(email=email)
    if isinstance(user, DirectoryUnavailable):
        return user

    # 3. 注文候補を組み立てる
    order = Order.create(product_id=product_id, email=email, user=user)

    # 4. コミット (本当の一意性保証)
    inserted = await order_store.insert(session, order)
    if isinstance(inserted, DuplicateKey):
        logger.info("Duplicate order rejected by unique constraint: product=%s", product_id)
        return DuplicateOrder(email=email, product_id=product_id)

    logger.info("Order created: order_id=%s product=%s", inserted, product_id)

    # 5. イベント発行
    await _publish_order_created(redis, order)

    return OrderPlaced(order_id=inserted)


async def _publish_order_created(redis: aioredis.Redis | None, order: Order) -> None:
    """
    OrderCreated を Redis に発行する。

    注文は既にコミット済みなので、発行の失敗は結果を変えない (ログのみ)。
    """
    if redis is None:
        return
    event = OrderCreated.from_order(order)
    try:
        await redis.publish(ORDER_EVENTS_CHANNEL, json.dumps({
            "event_type": "OrderCreated",
            "data": event.model_dump(mode="json"),
        }, default=str))
    except RedisError:
        logger.exception("Failed to publish OrderCreated: order_id=%s", order.order_id)
