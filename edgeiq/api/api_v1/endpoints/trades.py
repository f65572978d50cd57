from datetime import datetime
from typing import Optional
import logging

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from edgeiq.api.deps import get_current_user_id, to_http_exception, internal_error
from edgeiq.core.cache import AnalyticsCache, get_cache
from edgeiq.core.database import get_db
from edgeiq.core.exceptions import EdgeIQError
from edgeiq.models.trades import TradeStatus, Strategy, TradingSession
from edgeiq.schemas.trades import (
    TradeCreate, TradeUpdate, TradeResponse, TradeListResponse, BulkImportRequest
)
from edgeiq.services.task_runner import AnalysisTaskRunner, get_task_runner
from edgeiq.services.trade_service import TradeService

router = APIRouter()
logger = logging.getLogger(__name__)


def get_trade_service(
    db: Session = Depends(get_db),
    cache: AnalyticsCache = Depends(get_cache),
    task_runner: AnalysisTaskRunner = Depends(get_task_runner)
) -> TradeService:
    return TradeService(db=db, cache=cache, task_runner=task_runner)


@router.post("", response_model=TradeResponse, status_code=status.HTTP_201_CREATED)
async def create_trade(
    request: TradeCreate,
    user_id: int = Depends(get_current_user_id),
    service: TradeService = Depends(get_trade_service)
):
    """トレード登録"""
    try:
        return service.create_trade(user_id, request)
    except Exception as e:
        logger.error(f"トレード登録エラー: {str(e)}")
        raise internal_error("トレード登録エラー", e)


@router.get("", response_model=TradeListResponse)
async def list_trades(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort: str = Query("-trade_date", pattern=r"^-?(trade_date|created_at|pnl|symbol)$"),
    trade_status: Optional[TradeStatus] = Query(None, alias="status"),
    strategy: Optional[Strategy] = None,
    session: Optional[TradingSession] = None,
    symbol: Optional[str] = Query(None, max_length=20),
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    user_id: int = Depends(get_current_user_id),
    service: TradeService = Depends(get_trade_service)
):
    """トレード一覧"""
    try:
        return service.list_trades(
            user_id,
            page=page,
            limit=limit,
            sort=sort,
            status=trade_status.value if trade_status else None,
            strategy=strategy.value if strategy else None,
            session=session.value if session else None,
            symbol=symbol,
            date_from=date_from,
            date_to=date_to,
        )
    except Exception as e:
        logger.error(f"トレード一覧取得エラー: {str(e)}")
        raise internal_error("トレード一覧取得エラー", e)


@router.post("/bulk", status_code=status.HTTP_201_CREATED)
async def bulk_import_trades(
    request: BulkImportRequest,
    user_id: int = Depends(get_current_user_id),
    service: TradeService = Depends(get_trade_service)
):
    """トレード一括インポート（最大500件）"""
    try:
        imported = service.bulk_import(user_id, request.trades)
    except Exception as e:
        logger.error(f"一括インポートエラー: {str(e)}")
        raise internal_error("一括インポートエラー", e)

    return {
        "imported": imported,
        "message": f"{imported}件のトレードをインポートしました"
    }


@router.get("/export")
async def export_trades(
    export_format: str = Query("csv", alias="format", pattern="^(csv|json)$"),
    user_id: int = Depends(get_current_user_id),
    service: TradeService = Depends(get_trade_service)
):
    """トレードエクスポート"""
    try:
        exported = service.export_trades(user_id, export_format)
    except Exception as e:
        logger.error(f"エクスポートエラー: {str(e)}")
        raise internal_error("エクスポートエラー", e)

    if export_format == "json":
        return exported

    filename = f"trades_{datetime.now().strftime('%Y%m%d')}.csv"
    return Response(
        content=exported,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )


@router.get("/{trade_id}", response_model=TradeResponse)
async def get_trade(
    trade_id: int,
    user_id: int = Depends(get_current_user_id),
    service: TradeService = Depends(get_trade_service)
):
    try:
        return service.get_trade(user_id, trade_id)
    except EdgeIQError as e:
        raise to_http_exception(e)


@router.patch("/{trade_id}", response_model=TradeResponse)
async def update_trade(
    trade_id: int,
    request: TradeUpdate,
    user_id: int = Depends(get_current_user_id),
    service: TradeService = Depends(get_trade_service)
):
    """トレード更新"""
    try:
        return service.update_trade(user_id, trade_id, request)
    except EdgeIQError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"トレード更新エラー: {str(e)}")
        raise internal_error("トレード更新エラー", e)


@router.delete("/{trade_id}")
async def delete_trade(
    trade_id: int,
    user_id: int = Depends(get_current_user_id),
    service: TradeService = Depends(get_trade_service)
):
    try:
        service.delete_trade(user_id, trade_id)
    except EdgeIQError as e:
        raise to_http_exception(e)

    return {"success": True, "message": "トレードを削除しました"}
