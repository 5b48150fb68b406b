"""Serve the API over paper backends for dry runs."""

import asyncio

import uvicorn

from yieldrouter.api.app import create_app
from yieldrouter.config import YieldRouterSettings, settings
from yieldrouter.core.access import Principal
from yieldrouter.core.bus import EventBus
from yieldrouter.execution.paper_backend import PaperBackend
from yieldrouter.logging import get_logger, setup_logging
from yieldrouter.manager import YieldManager

logger = get_logger(__name__)


def build_paper_manager(cfg: YieldRouterSettings | None = None) -> YieldManager:
    """Manager wired from settings with one PaperBackend per ``paper_backends`` entry."""
    cfg = cfg or settings
    owner = Principal(cfg.owner_principal)
    manager = YieldManager.from_settings(owner, Principal(cfg.vault_principal), cfg, bus=EventBus())

    async def _register() -> None:
        for handle, apy_bp in cfg.paper_backends.items():
            await manager.add_backend(owner, PaperBackend(handle, apy_bp))

    asyncio.run(_register())
    logger.info(f"Paper manager ready with {manager.backend_count()} backends")
    return manager


def main() -> None:
    setup_logging()
    app = create_app(build_paper_manager())
    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
