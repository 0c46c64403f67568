import asyncio
import logging
import os
from collections.abc import AsyncIterator
from functools import lru_cache
from pathlib import Path

from fastapi import Depends, Request

from eventlens.core.entities import SiteConfig
from eventlens.core.errors import NotFound
from eventlens.core.ports.events import RawEventStorePort
from eventlens.core.ports.registry import GoalRegistryPort, SiteRegistryPort
from eventlens.core.ports.time import TimePort
from eventlens.core.services.execution import CancellationToken
from eventlens.rules.models import Rules

logger = logging.getLogger(__name__)

DISCONNECT_POLL_SECONDS = 0.25


# --- Settings ---
class Settings:
    def __init__(self) -> None:
        self.base_dir = Path(os.getcwd())
        data_dir = os.environ.get("EVENTLENS_DATA_DIR", "./data")
        self.db_path = os.environ.get("EVENTLENS_DB_PATH", f"{data_dir}/events.db")
        self.rules_path = Path(os.environ.get("EVENTLENS_RULES_PATH", self.base_dir / "rules.yaml"))
        self.registry_path = Path(
            os.environ.get("EVENTLENS_REGISTRY_PATH", self.base_dir / "registry.yaml")
        )
        self.log_level = os.environ.get("EVENTLENS_LOG_LEVEL", "INFO").upper()


@lru_cache
def get_settings() -> Settings:
    return Settings()


# --- Startup state ---
# Resolved once in the app lifespan and read from app.state per request.


def get_rules(request: Request) -> Rules:
    return request.app.state.rules


def get_store(request: Request) -> RawEventStorePort:
    return request.app.state.store


def get_goal_registry(request: Request) -> GoalRegistryPort:
    return request.app.state.goals


def get_site_registry(request: Request) -> SiteRegistryPort:
    return request.app.state.sites


def get_clock(request: Request) -> TimePort:
    return request.app.state.clock


# --- Per-request ---


async def _watch_disconnect(request: Request, token: CancellationToken) -> None:
    while not token.cancelled:
        if await request.is_disconnected():
            logger.info("Client disconnected: %s %s", request.method, request.url.path)
            token.cancel("Client disconnected")
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


async def get_token(
    request: Request,
    rules: Rules = Depends(get_rules),
) -> AsyncIterator[CancellationToken]:
    """
    One cancellation token per query.

    The token times out after the configured limit and is cancelled when the
    caller disconnects; the watcher stops with the request.
    """
    token = CancellationToken(timeout_seconds=rules.query.timeout_seconds)
    watcher = asyncio.create_task(_watch_disconnect(request, token))
    try:
        yield token
    finally:
        watcher.cancel()


def get_site(
    site_id: int,
    sites: SiteRegistryPort = Depends(get_site_registry),
) -> SiteConfig:
    site = sites.get_site(site_id)
    if site is None:
        raise NotFound(f"Site {site_id} not found", field_name="site_id")
    return site
