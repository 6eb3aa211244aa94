import logging

from fastapi import FastAPI

from .api import health, servers
from .config import get_settings


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


configure_logging(get_settings().log_level)

app = FastAPI(title="Game Server Fleet Monitor")

app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(servers.router, prefix="/api", tags=["servers"])
