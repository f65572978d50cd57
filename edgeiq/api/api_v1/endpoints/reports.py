from datetime import datetime
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, model_validator
from sqlalchemy.orm import Session

from edgeiq.api.deps import get_current_user_id, no_data_response, to_http_exception
from edgeiq.core.config import settings
from edgeiq.core.database import get_db
from edgeiq.core.exceptions import EdgeIQError
from edgeiq.services.narrative_generator import AnthropicNarrativeGenerator, NarrativeGenerator
from edgeiq.services.report_generator import ReportGenerator

router = APIRouter()
logger = logging.getLogger(__name__)


# Request Models
class PeriodReportRequest(BaseModel):
    period_start: datetime
    period_end: datetime

    @model_validator(mode="after")
    def check_period(self):
        if self.period_end < self.period_start:
            raise ValueError("period_endはperiod_start以降である必要があります")
        return self


def get_narrative_generator() -> NarrativeGenerator:
    if not settings.anthropic_api_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="ナラティブ生成が設定されていません（ANTHROPIC_API_KEY未設定）"
        )
    return AnthropicNarrativeGenerator(
        api_key=settings.anthropic_api_key,
        model=settings.narrative_model,
        max_tokens=settings.narrative_max_tokens,
    )


def get_report_generator(db: Session = Depends(get_db)) -> ReportGenerator:
    # 閲覧系はナラティブ生成を使わない
    return ReportGenerator(db=db, narrative_generator=None)


@router.post("/period")
async def generate_period_report(
    request: PeriodReportRequest,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    narrative_generator: NarrativeGenerator = Depends(get_narrative_generator)
):
    """期間レポート生成（同一期間は上書き）"""
    generator = ReportGenerator(db=db, narrative_generator=narrative_generator)
    try:
        result = generator.generate_period_report(user_id, request.period_start, request.period_end)
    except EdgeIQError as e:
        raise to_http_exception(e)

    if result is None:
        return no_data_response("指定期間に決済済みトレードがありません")
    return result.to_dict()


@router.get("/period")
async def list_period_reports(
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=52),
    user_id: int = Depends(get_current_user_id),
    generator: ReportGenerator = Depends(get_report_generator)
):
    """期間レポート一覧（新しい順）"""
    reports = generator.list_reports(user_id, skip=(page - 1) * limit, limit=limit)
    return {
        "reports": [report.to_dict() for report in reports],
        "total": generator.count_reports(user_id),
        "page": page,
        "limit": limit,
    }


@router.get("/period/{report_id}")
async def get_period_report(
    report_id: int,
    user_id: int = Depends(get_current_user_id),
    generator: ReportGenerator = Depends(get_report_generator)
):
    report = generator.get_report(user_id, report_id)
    if report is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"レポートが見つかりません: {report_id}"
        )
    return report.to_dict()
