"""
Order Service - クエリハンドラ (Read 側)

読み取りはストアへの委譲のみ。email の形式チェックは
HTTP 層 (main.py) の責務。
"""

from sqlalchemy.ext.asyncio import AsyncSession

from . import order_store
from .aggregate import Order


async def get_orders_by_email(session: AsyncSession, email: str) -> list[Order]:
    """email (大文字小文字を区別しない) に紐づく注文一覧を返す。"""
    return await order_store.find_all_by_email(session, email)
