"""
Shop Payments - Main entry point.

Serves the HTTP API with uvicorn. Repositories, the payment processor
and the event consumer are created in the application lifespan.
"""

import uvicorn

from shop_payments.infrastructure.settings import get_settings
from shop_payments.loggers import logger
from shop_payments.web.app import create_app


def main() -> None:
    settings = get_settings()
    app = create_app(settings=settings)
    logger.info(f"Starting shop payments API on {settings.host}:{settings.port}")
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        logger.info("Application stopped by user")
