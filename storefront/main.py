"""Главный файл приложения."""
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from storefront.api.v1 import router as api_v1_router
from storefront.config import settings
from storefront.core.cache import cache_service
from storefront.core.exceptions import ServiceError
from storefront.services.image_storage import PUBLIC_PREFIX

# Настройка логирования
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Управление жизненным циклом приложения."""
    # Startup
    await cache_service.connect()
    logger.info(f"Storefront API started (environment: {settings.environment})")

    yield

    # Shutdown
    await cache_service.disconnect()


app = FastAPI(
    title="Storefront API",
    description="Backend API магазина: оплата, заказы, способы оплаты",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS - в development режиме разрешаем все origins
if settings.is_development:
    cors_origins = ["*"]
    # Нельзя использовать allow_credentials=True с allow_origins=["*"]
    allow_creds = False
else:
    cors_origins = list(set(settings.cors_origins))
    allow_creds = True

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=allow_creds,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    """Ошибки сервисов в JSON: {"detail", "error_code"}."""
    if exc.status_code >= 500:
        logger.error(f"❌ {exc.error_code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error_code": exc.error_code},
    )


# Подключаем роутеры
app.include_router(api_v1_router, prefix="/api/v1")

# Статическая раздача фото подтверждений депозитов
upload_dir = Path(settings.upload_dir)
upload_dir.mkdir(parents=True, exist_ok=True)
app.mount(PUBLIC_PREFIX, StaticFiles(directory=str(upload_dir)), name="uploads")


@app.get("/")
async def root():
    """Корневой endpoint."""
    return {
        "message": "Storefront API",
        "version": "1.0.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "ok"}
