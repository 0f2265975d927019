"""
Order Service - 注文モデルと結果型

注文は作成後に変更されない (immutable)。
作成処理の結果は例外ではなく値として返す:
成功 (OrderPlaced) か、3 種類の失敗のいずれか 1 つになる。
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID, uuid4


@dataclass(frozen=True)
class UserIdentity:
    """ディレクトリから取得したユーザーの氏名 (リクエストごとに生成、キャッシュしない)"""
    first_name: str
    last_name: str


@dataclass(frozen=True)
class Order:
    """
    注文 - 永続化の単位。

    (email, product_id) の組は email の大文字小文字を区別せずに一意。
    """
    order_id: UUID
    email: str
    first_name: str
    last_name: str
    product_id: str
    created_at: datetime

    @classmethod
    def create(cls, product_id: str, email: str, user: UserIdentity) -> "Order":
        """ID と作成日時をサーバー側で割り当てて注文候補を作る。"""
        return cls(
            order_id=uuid4(),
            email=email,
            first_name=user.first_name,
            last_name=user.last_name,
            product_id=product_id,
            created_at=datetime.now(timezone.utc),
        )


# ── ディレクトリ照会の結果 ─────────────────────────

@dataclass(frozen=True)
class NotFound:
    """ディレクトリに該当ユーザーがいない"""


@dataclass(frozen=True)
class DirectoryUnavailable:
    """ディレクトリ障害 (タイムアウト・非 2xx・接続失敗・不正なペイロード)"""
    reason: str


# ── ストアの結果 ─────────────────────────────────

@dataclass(frozen=True)
class DuplicateKey:
    """一意制約 (email, product_id) に違反した"""


# ── 注文作成ワークフローの結果 ───────────────────

@dataclass(frozen=True)
class OrderPlaced:
    order_id: UUID


@dataclass(frozen=True)
class DuplicateOrder:
    email: str
    product_id: str


@dataclass(frozen=True)
class EmailNotFound:
    email: str


LookupResult = UserIdentity | NotFound | DirectoryUnavailable
InsertResult = UUID | DuplicateKey
CreateOrderResult = OrderPlaced | DuplicateOrder | EmailNotFound | DirectoryUnavailable
