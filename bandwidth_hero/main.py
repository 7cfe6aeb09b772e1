from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI

from .api.proxy import router as proxy_router
from .api.routes_health import router as health_router
from .core.config import Settings, get_settings
from .core.fetcher import Fetcher
from .services.codec import ImageCodec, PillowCodec


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    codec: Optional[ImageCodec] = None,
) -> FastAPI:
    """Build the proxy app around an explicit settings object.

    `transport` replaces the network for the origin client (tests pass an
    httpx.MockTransport); `codec` replaces the Pillow codec.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with httpx.AsyncClient(
            transport=transport,
            timeout=httpx.Timeout(settings.FETCH_TIMEOUT),
            follow_redirects=True,
        ) as client:
            app.state.fetcher = Fetcher(client, user_agent=settings.USER_AGENT, via=settings.VIA)
            yield

    app = FastAPI(title="Bandwidth Hero Proxy", description="Image compression proxy", lifespan=lifespan)
    app.state.settings = settings
    app.state.codec = codec or PillowCodec(spool_size=settings.DECODE_SPOOL_SIZE)

    app.include_router(health_router)
    app.include_router(proxy_router)
    return app


app = create_app()
