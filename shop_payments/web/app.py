"""
HTTP application for the shop payments service.

Domain errors are rendered as ``{error, message, details}`` with the
status code carried by the exception.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.asyncio import Redis

from shop_payments.application.api_facade import ShopPaymentsFacade
from shop_payments.core.exceptions import ShopPaymentsError
from shop_payments.infrastructure.settings import Settings, get_settings
from shop_payments.loggers import logger
from shop_payments.web.routers import connect_router, terminal_router, webhooks_router


def create_app(
    facade: Optional[ShopPaymentsFacade] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        facade: Pre-built facade. When omitted one is created on startup
            from a Redis connection.
        settings: Settings used to build the facade.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        redis = None
        if facade is None:
            redis = Redis.from_url(settings.redis.url, decode_responses=settings.redis.decode_responses)
            app.state.facade = ShopPaymentsFacade.from_redis(redis, settings)
        else:
            app.state.facade = facade

        await app.state.facade.start()
        logger.info(f"Shop payments API started (env={settings.app_env}, test_mode={settings.test_mode})")
        try:
            yield
        finally:
            await app.state.facade.shutdown()
            if redis is not None:
                await redis.aclose()
            logger.info("Shop payments API stopped")

    app = FastAPI(title="Shop Payments API", lifespan=lifespan)
    if facade is not None:
        app.state.facade = facade

    @app.exception_handler(ShopPaymentsError)
    async def shop_payments_error_handler(request: Request, exc: ShopPaymentsError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", "")}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content={
                "error": "ValidationError",
                "message": "Invalid request",
                "details": {"errors": errors},
            },
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(terminal_router)
    app.include_router(connect_router)
    app.include_router(webhooks_router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app
