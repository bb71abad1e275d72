import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from app.config import settings
from app.database import init_db
from app.routes.slots import router as slots_router
from app.routes.bookings import router as bookings_router
from app.routes.public_bookings import router as public_bookings_router
from app.services.scheduler import start_scheduler, shutdown_scheduler
from app.utils.exceptions import AppException

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """애플리케이션 라이프사이클 관리"""
    # 시작: 로깅, 데이터베이스 테이블 생성, 만료 스케줄러
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    init_db()
    logger.info("Database initialized")
    if settings.scheduler_enabled:
        start_scheduler()
    yield
    # 종료
    shutdown_scheduler()
    logger.info("Application shutdown")


app = FastAPI(
    title=settings.app_name,
    description="방문 슬롯 예약 엔진 API",
    version="1.0.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan
)

# CORS 미들웨어 설정
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException):
    """엔진 오류를 {kind, detail} 형태로 응답"""
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# 헬스체크 엔드포인트
@app.get("/api/health")
async def health_check():
    """애플리케이션 상태 확인"""
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": "1.0.0",
        "scheduler": settings.scheduler_enabled
    }


# 라우터 등록
app.include_router(slots_router)
app.include_router(bookings_router)
app.include_router(public_bookings_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug
    )
