"""
Order Service - 注文ストア

注文テーブルへの読み書きを担当する。
一意性 (email, product_id) の最終的な判定はアプリケーションではなく
データベースの UNIQUE インデックスが行う。
exists() による事前チェックは並行リクエストでは競合するため、
INSERT 時の制約違反を DuplicateKey に変換して返す。
"""

from uuid import UUID

from sqlalchemy import DateTime, String, bindparam, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from .aggregate import DuplicateKey, InsertResult, Order

UNIQUE_INDEX = "uq_orders_email_product"

# email は大文字小文字を区別しないため lower(email) に対してインデックスを張る
# 氏名は外部ディレクトリの値をそのまま保存するので長さを制限しない
SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS orders (
        order_id    VARCHAR(36)  PRIMARY KEY,
        email       VARCHAR(320) NOT NULL,
        first_name  TEXT         NOT NULL,
        last_name   TEXT         NOT NULL,
        product_id  VARCHAR(100) NOT NULL,
        created_at  TIMESTAMPTZ  NOT NULL
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_orders_email_product
        ON orders (lower(email), product_id)
    """,
    """
    CREATE INDEX IF NOT EXISTS ix_orders_email
        ON orders (lower(email))
    """,
)

_INSERT = text("""
    INSERT INTO orders
        (order_id, email, first_name, last_name, product_id, created_at)
    VALUES
        (:order_id, :email, :first_name, :last_name, :product_id, :created_at)
""").bindparams(bindparam("created_at", type_=DateTime(timezone=True)))

_SELECT_BY_EMAIL = text("""
    SELECT order_id, email, first_name, last_name, product_id, created_at
    FROM orders
    WHERE lower(email) = :email_key
    ORDER BY created_at ASC, order_id ASC
""").columns(
    order_id=String,
    email=String,
    first_name=String,
    last_name=String,
    product_id=String,
    created_at=DateTime(timezone=True),
)


def email_key(email: str) -> str:
    """大文字小文字を区別しない比較用のキー"""
    return email.lower()


async def create_schema(engine: AsyncEngine) -> None:
    """orders テーブルとインデックスを作成する (既にあれば何もしない)。"""
    async with engine.begin() as conn:
        for ddl in SCHEMA:
            await conn.execute(text(ddl))


async def exists(session: AsyncSession, email: str, product_id: str) -> bool:
    """
    同じ顧客・同じ商品の注文が既にあるかを返す。

    高速に失敗させるための事前チェックであり、並行リクエストに対する
    一意性の保証にはならない (insert が最終判定)。
    ディレクトリ照会の間トランザクションを保持しないよう、ここで閉じる。
    """
    result = await session.execute(
        text("""
            SELECT 1 FROM orders
            WHERE lower(email) = :email_key AND product_id = :product_id
            LIMIT 1
        """),
        {"email_key": email_key(email), "product_id": product_id},
    )
    found = result.first() is not None
    await session.commit()
    return found


async def insert(session: AsyncSession, order: Order) -> InsertResult:
    """
    注文を 1 件追記する。

    同じ (lower(email), product_id) が既に存在すると UNIQUE 制約違反で
    失敗する → DuplicateKey を返す。並行して同じ組を INSERT しても
    成功するのは 1 件だけ。
    それ以外の制約違反 (order_id の衝突など) は IntegrityError のまま送出する。
    """
    try:
        await session.execute(
            _INSERT,
            {
                "order_id": str(order.order_id),
                "email": order.email,
                "first_name": order.first_name,
                "last_name": order.last_name,
                "product_id": order.product_id,
                "created_at": order.created_at,
            },
        )
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        # PostgreSQL / SQLite ともにエラーメッセージに違反したインデックス名が入る
        if UNIQUE_INDEX not in str(e.orig):
            raise
        return DuplicateKey()
    return order.order_id


async def find_all_by_email(session: AsyncSession, email: str) -> list[Order]:
    """指定 email (大文字小文字を区別しない) の注文を作成順に返す。該当なしは空リスト。"""
    result = await session.execute(_SELECT_BY_EMAIL, {"email_key": email_key(email)})
    return [
        Order(
            order_id=UUID(row.order_id),
            email=row.email,
            first_name=row.first_name,
            last_name=row.last_name,
            product_id=row.product_id,
            created_at=row.created_at,
        )
        for row in result.fetchall()
    ]
