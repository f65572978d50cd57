import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from edgeiq.api.deps import get_current_user_id, no_data_response, to_http_exception
from edgeiq.core.database import get_db
from edgeiq.core.exceptions import EdgeIQError
from edgeiq.services.behavior_service import BehaviorService

router = APIRouter()
logger = logging.getLogger(__name__)


def get_behavior_service(db: Session = Depends(get_db)) -> BehaviorService:
    return BehaviorService(db=db)


@router.post("/analyze")
async def analyze_behavior(
    user_id: int = Depends(get_current_user_id),
    service: BehaviorService = Depends(get_behavior_service)
):
    """直近24時間の行動分析（スナップショットを記録）"""
    try:
        analysis = service.analyze_behavior(user_id)
    except EdgeIQError as e:
        raise to_http_exception(e)

    if analysis is None:
        return no_data_response("直近24時間のトレードがありません")
    return analysis.to_dict()


@router.get("/summary")
async def get_behavior_summary(
    user_id: int = Depends(get_current_user_id),
    service: BehaviorService = Depends(get_behavior_service)
):
    """行動トレンド（直近30スナップショット）"""
    try:
        trend = service.get_behavior_summary(user_id)
    except EdgeIQError as e:
        raise to_http_exception(e)

    if trend is None:
        return no_data_response("行動分析の履歴がありません")
    return trend.to_dict()
