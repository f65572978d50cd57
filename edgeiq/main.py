import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from edgeiq.core.config import settings
from edgeiq.core.database import init_db
from edgeiq.api.api_v1.api import api_router
from edgeiq.services.task_runner import get_task_runner

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info(f"{settings.app_name} 起動")
    yield
    get_task_runner().shutdown(wait=False)
    logger.info(f"{settings.app_name} 停止")


app = FastAPI(
    title=settings.app_name,
    version="1.0.0",
    description="トレード記録の成績分析・行動パターン検出・期間レポート生成サービス",
    lifespan=lifespan
)

# CORS設定
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # 本番環境では適切に制限
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API ルーターの登録
app.include_router(api_router, prefix=settings.api_v1_str)


@app.get("/")
async def root():
    return {
        "message": f"Welcome to {settings.app_name}",
        "status": "running",
        "version": "1.0.0"
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "edgeiq.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug
    )
