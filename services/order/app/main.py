"""
Order Service - FastAPI エントリーポイント

  POST /api/orders          注文作成 (Write 側: commands)
  GET  /api/orders?email=   注文一覧 (Read 側: queries)

ワークフローの結果を HTTP ステータスに変換する:

  OrderPlaced           → 201
  DuplicateOrder        → 409 DUPLICATE_ORDER
  EmailNotFound         → 422 EMAIL_NOT_FOUND
  DirectoryUnavailable  → 502 EXTERNAL_SERVICE_ERROR
  リクエスト不正        → 400 BAD_REQUEST
  想定外の例外          → 500 INTERNAL_ERROR (詳細はログのみ)
"""

import logging
import os
from contextlib import asynccontextmanager
from uuid import UUID

import redis.asyncio as aioredis
from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from . import commands, order_store, queries
from .aggregate import DirectoryUnavailable, DuplicateOrder, EmailNotFound, Order, OrderPlaced
from .directory import DEFAULT_MAX_PAGES, DEFAULT_TIMEOUT, DirectoryClient

DATABASE_URL = os.environ["DATABASE_URL"]
REDIS_URL = os.environ.get("REDIS_URL", "")
DIRECTORY_BASE_URL = os.environ.get("DIRECTORY_BASE_URL", "https://reqres.in/api")
DIRECTORY_API_KEY = os.environ.get("DIRECTORY_API_KEY", "")
DIRECTORY_TIMEOUT_SECONDS = float(os.environ.get("DIRECTORY_TIMEOUT_SECONDS", DEFAULT_TIMEOUT))
DIRECTORY_MAX_PAGES = int(os.environ.get("DIRECTORY_MAX_PAGES", DEFAULT_MAX_PAGES))

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

engine = create_async_engine(DATABASE_URL, echo=False)
async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
redis_pool: aioredis.Redis | None = None
directory: DirectoryClient | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global redis_pool, directory
    await order_store.create_schema(engine)
    # REDIS_URL 未設定ならイベント発行は行わない
    if REDIS_URL:
        redis_pool = aioredis.from_url(REDIS_URL, decode_responses=True)
    directory = DirectoryClient.create(
        DIRECTORY_BASE_URL,
        api_key=DIRECTORY_API_KEY,
        timeout=DIRECTORY_TIMEOUT_SECONDS,
        max_pages=DIRECTORY_MAX_PAGES,
    )
    yield
    await directory.aclose()
    directory = None
    if redis_pool is not None:
        await redis_pool.aclose()
        redis_pool = None
    await engine.dispose()


app = FastAPI(title="Order Service", lifespan=lifespan)


def get_directory() -> DirectoryClient:
    return directory


# ── Request / Response Models ────────────────────

class CreateOrderRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    product_id: str = Field(alias="productId", min_length=1, max_length=100)
    email: EmailStr


class CreateOrderResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: UUID = Field(alias="orderId")


class OrderResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: UUID = Field(alias="orderId")
    email: str
    first_name: str = Field(alias="firstName")
    last_name: str = Field(alias="lastName")
    product_id: str = Field(alias="productId")

    @classmethod
    def from_order(cls, order: Order) -> "OrderResponse":
        return cls(
            order_id=order.order_id,
            email=order.email,
            first_name=order.first_name,
            last_name=order.last_name,
            product_id=order.product_id,
        )


class ErrorResponse(BaseModel):
    code: str
    message: str


def error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(code=code, message=message).model_dump(),
    )


# ── Exception Handlers ───────────────────────────

@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError):
    for err in exc.errors():
        loc = err.get("loc", ())
        if err.get("type") == "missing" and loc and loc[0] == "query":
            return error_response(
                400, "BAD_REQUEST", f"Required query parameter '{loc[-1]}' is missing"
            )
    return error_response(400, "BAD_REQUEST", "Invalid request")


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception):
    """最後の砦。内部の詳細 (スタックトレース・SQL など) は返さない。"""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(500, "INTERNAL_ERROR", "Unexpected error")


# ── Command Endpoints (Write 側) ─────────────────

@app.post(
    "/api/orders",
    status_code=201,
    response_model=CreateOrderResponse,
    responses={
        400: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
)
async def create_order(
    req: CreateOrderRequest,
    directory_client: DirectoryClient = Depends(get_directory),
):
    """注文作成コマンド"""
    async with async_session() as session:
        result = await commands.create_order(
            session, directory_client, redis_pool,
            req.product_id, req.email,
        )

    if isinstance(result, OrderPlaced):
        return CreateOrderResponse(order_id=result.order_id)
    if isinstance(result, DuplicateOrder):
        return error_response(409, "DUPLICATE_ORDER", "Customer has already ordered this product")
    if isinstance(result, EmailNotFound):
        return error_response(422, "EMAIL_NOT_FOUND", "Email does not exist in external user system")
    if isinstance(result, DirectoryUnavailable):
        return error_response(
            502, "EXTERNAL_SERVICE_ERROR", f"User directory unavailable: {result.reason}"
        )
    raise RuntimeError(f"Unexpected workflow result: {result!r}")


# ── Query Endpoints (Read 側) ────────────────────

@app.get(
    "/api/orders",
    response_model=list[OrderResponse],
    responses={400: {"model": ErrorResponse}},
)
async def list_orders(email: str = Query(min_length=1)):
    """email に紐づく注文一覧"""
    async with async_session() as session:
        orders = await queries.get_orders_by_email(session, email)
    return [OrderResponse.from_order(o) for o in orders]


@app.get("/health")
async def health():
    return {"status": "ok", "service": "order-service"}
