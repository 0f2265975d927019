"""
Order Service - 外部ユーザーディレクトリ クライアント

ページングされた /users API を順に辿り、email が一致するユーザーを探す。

  GET {base_url}/users?page=N
  → {"total_pages": M, "data": [{"email", "first_name", "last_name"}]}

通信エラー・非 2xx・タイムアウト・不正なペイロードはすべて
DirectoryUnavailable に変換する。呼び出し側が httpx の例外を見ることはない。
照会 1 回 (全ページ分) に timeout 秒の期限を設ける。
"""

import asyncio
import logging

import httpx
from pydantic import BaseModel, ValidationError

from .aggregate import DirectoryUnavailable, LookupResult, NotFound, UserIdentity

logger = logging.getLogger(__name__)

USER_AGENT = "order-service"
DEFAULT_TIMEOUT = 3.0
DEFAULT_MAX_PAGES = 50


# ── ワイヤーフォーマット (snake_case) ─────────────

class DirectoryUser(BaseModel):
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None


class DirectoryPage(BaseModel):
    total_pages: int = 0
    data: list[DirectoryUser]


class DirectoryClient:
    """外部ディレクトリへの照会 (状態を持たず、結果もキャッシュしない)"""

    def __init__(
        self,
        client: httpx.AsyncClient,
        max_pages: int = DEFAULT_MAX_PAGES,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.client = client
        self.max_pages = max_pages
        self.timeout = timeout

    @classmethod
    def create(
        cls,
        base_url: str,
        api_key: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        max_pages: int = DEFAULT_MAX_PAGES,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "DirectoryClient":
        headers = {"Accept": "application/json", "User-Agent": USER_AGENT}
        # API キーは設定されている場合だけ送る
        if api_key:
            headers["x-api-key"] = api_key
        client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )
        return cls(client, max_pages=max_pages, timeout=timeout)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def resolve(self, email: str | None) -> LookupResult:
        """
        email に一致するユーザーの氏名を返す。

        1. 空の email はネットワークを使わずに NotFound
        2. page=1 から順に取得し、大文字小文字を区別せずに email を比較
        3. total_pages (0 以下は 1 とみなす) をページごとに読み直し、
           最終ページまでに見つからなければ NotFound
        4. total_pages が増え続けるディレクトリに備えて max_pages で打ち切る
        5. 全ページの取得を含めて timeout 秒を超えたら DirectoryUnavailable
           (httpx の timeout は接続・読み取りの各段階にしか効かない)
        """
        if not email or not email.strip():
            return NotFound()
        wanted = email.strip().lower()

        try:
            return await asyncio.wait_for(self._scan(wanted), timeout=self.timeout)
        except asyncio.TimeoutError:
            return self._unavailable(f"timeout: no answer within {self.timeout}s")

    async def _scan(self, wanted: str) -> LookupResult:
        page = 1
        while page <= self.max_pages:
            fetched = await self._fetch_page(page)
            if isinstance(fetched, DirectoryUnavailable):
                return fetched

            for user in fetched.data:
                if user.email and user.email.lower() == wanted:
                    return UserIdentity(
                        first_name=user.first_name or "",
                        last_name=user.last_name or "",
                    )

            total_pages = max(1, fetched.total_pages)
            if page >= total_pages:
                return NotFound()
            page += 1

        return self._unavailable(f"pagination exceeded {self.max_pages} pages")

    async def _fetch_page(self, page: int) -> DirectoryPage | DirectoryUnavailable:
        try:
            resp = await self.client.get("/users", params={"page": page})
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            return self._unavailable(f"HTTP {e.response.status_code}")
        except httpx.TimeoutException as e:
            return self._unavailable(f"timeout: {type(e).__name__}")
        except httpx.HTTPError as e:
            return self._unavailable(type(e).__name__)

        try:
            return DirectoryPage.model_validate_json(resp.content)
        except ValidationError:
            return self._unavailable("malformed payload")

    @staticmethod
    def _unavailable(reason: str) -> DirectoryUnavailable:
        logger.warning("User directory unavailable: %s", reason)
        return DirectoryUnavailable(reason=reason)
