from contextlib import asynccontextmanager

from fastapi import FastAPI

from freedom_bot.api.routes.health import router as health_router
from freedom_bot.api.routes.webhook import get_bot, router as webhook_router
from freedom_bot.core.config import settings
from freedom_bot.core.logging import setup_logging


@asynccontextmanager
async def lifespan(application: FastAPI):
    if settings.bot_token and settings.webhook_url:
        await get_bot().set_webhook(
            url=settings.webhook_url.rstrip("/") + settings.webhook_path,
            secret_token=settings.webhook_secret,
        )
    yield


def create_app() -> FastAPI:
    setup_logging(settings.log_level)
    application = FastAPI(title="Freedom Bot API", lifespan=lifespan)
    application.include_router(health_router)
    application.include_router(webhook_router)
    return application


app = create_app()


def run() -> None:
    import uvicorn

    uvicorn.run(
        "freedom_bot.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
