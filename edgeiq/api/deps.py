import math

from fastapi import Header, HTTPException, status

from edgeiq.core.exceptions import EdgeIQError


async def get_current_user_id(x_user_id: int = Header(..., ge=1)) -> int:
    """リクエストヘッダーからオーナーIDを取得"""
    return x_user_id


def no_data_response(message: str) -> dict:
    return {"status": "no_data", "message": message}


def to_http_exception(error: EdgeIQError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=error.message)


def json_safe(obj):
    """JSON非対応の浮動小数点（inf/nan）を変換"""
    if isinstance(obj, dict):
        return {k: json_safe(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [json_safe(item) for item in obj]
    if isinstance(obj, float):
        if math.isnan(obj):
            return None
        if math.isinf(obj):
            return "Infinity" if obj > 0 else "-Infinity"
    return obj


def internal_error(prefix: str, error: Exception) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"{prefix}: {str(error)}"
    )
