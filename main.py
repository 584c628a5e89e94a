"""
FastAPI应用主入口：门票支付、状态查询与网关回调
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from api.middleware import LoggingMiddleware, RequestIDMiddleware
from api.routes import payments as payments_routes
from core.config import settings
from core.exceptions import register_exception_handlers
from core.logging_config import configure_logging, get_logger
from core.response import error_response, success_response
from core.settings import payment_settings
from infrastructure import database
from shared.codes import BusinessCode


configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.DEBUG:
        await database.create_tables()
        logger.info("database_initialized", mode="create_all")
    else:
        logger.info("database_migrations_required", hint="alembic upgrade head")
    if not payment_settings.mercadopago.access_token:
        logger.warning("gateway_credentials_missing", provider=payment_settings.default_provider)
    yield
    await database.engine.dispose()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
    description="活动门票支付编排与网关通知对账",
)

# 中间件按添加的逆序执行：RequestID 最先，日志中间件可以拿到 request_id
app.add_middleware(LoggingMiddleware)
app.add_middleware(RequestIDMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(payments_routes.router, prefix="/api/v1")


@app.get("/", tags=["Root"])
async def root():
    return success_response(
        message=f"{settings.PROJECT_NAME} is running",
        name=settings.PROJECT_NAME,
        version=settings.VERSION,
        provider=payment_settings.default_provider,
        docs="/docs",
    )


@app.get("/health", tags=["Health"])
async def health_check():
    """健康检查：台账数据库不可达时返回 503"""
    try:
        await database.ping()
    except (SQLAlchemyError, OSError) as exc:
        logger.error("health_check_failed", error=str(exc))
        response = error_response(
            message="Service unavailable",
            error="ledger database unreachable",
            code=BusinessCode.SERVICE_UNAVAILABLE,
            error_type="HealthCheckError",
        )
        return JSONResponse(status_code=503, content=response.model_dump(mode="json"))
    return success_response(message="OK", health="healthy", database="ok")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info",
    )
