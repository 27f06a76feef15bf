"""Dottie - 经期健康评估与聊天 FastAPI 主应用"""
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import ResponseValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import _running_tests, get_settings
from .database import init_db
from .errors import NotFoundError, OwnershipError, PersistenceError, ValidationError
from .middleware import ErrorLoggingMiddleware, RequestIdMiddleware, RequestLoggingMiddleware
from .routers import api_router
from .utils.logging_config import setup_logging

settings = get_settings()

setup_logging(settings.log_level, settings.log_dir, to_files=not _running_tests())

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    _ = app
    await init_db()
    logger.info("Database initialized")
    if settings.openai_api_key:
        logger.info("AI replies enabled model=%s", settings.ai_model)
    else:
        logger.info("AI replies running in mock mode")

    yield

    logger.info("Application shutdown")


app = FastAPI(
    title=settings.app_name,
    description="""
# Dottie API

经期健康评估与评估关联聊天服务。

## 认证方式

使用 JWT Bearer Token 认证，在请求头中添加：
```
Authorization: Bearer <your_token>
```

## 错误码说明

| 状态码 | 说明 |
|--------|------|
| 200 | 成功 |
| 201 | 已创建 |
| 400 | 请求参数错误 |
| 401 | 未认证 |
| 403 | 权限不足 |
| 404 | 资源不存在 |
| 500 | 服务器错误 |
""",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=[
        {"name": "评估", "description": "经期健康评估的提交、查询、更新与删除"},
        {"name": "聊天", "description": "与评估关联的对话"},
    ],
)


@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc: ValidationError):
    _ = request
    return JSONResponse(status_code=400, content={"detail": {"message": exc.message, "errors": exc.errors}})


@app.exception_handler(NotFoundError)
async def not_found_exception_handler(request: Request, exc: NotFoundError):
    _ = request
    return JSONResponse(status_code=404, content={"detail": exc.message or "Not found"})


@app.exception_handler(OwnershipError)
async def ownership_exception_handler(request: Request, exc: OwnershipError):
    # 不向调用方暴露资源是否存在
    _ = (request, exc)
    return JSONResponse(status_code=404, content={"detail": "Not found"})


@app.exception_handler(PersistenceError)
async def persistence_exception_handler(request: Request, exc: PersistenceError):
    logger.error("Persistence failure path=%s: %s", request.url.path, exc.message)
    return JSONResponse(
        status_code=500,
        content={"detail": exc.message if settings.debug else "Internal server error"},
    )


@app.exception_handler(ResponseValidationError)
async def response_validation_exception_handler(request: Request, exc: ResponseValidationError):
    logger.exception("Response validation error path=%s", request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": exc.errors() if settings.debug else "Internal server error"},
    )

app.add_middleware(ErrorLoggingMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(RequestIdMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-Id"],
)

app.include_router(api_router, prefix="/api")


@app.get("/")
async def root():
    """根路由"""
    return {
        "name": settings.app_name,
        "version": "1.0.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """健康检查"""
    return {"status": "healthy"}


@app.get("/api/health")
async def api_health_check():
    """健康检查（API别名，兼容前端proxy）"""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=True)
