"""
Compression proxy endpoint.
"""

from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request, Response, status

from ..core.errors import ClientInputError
from ..core.models import ProxyRequest
from ..services.exchange import ProxyExchange

router = APIRouter(tags=["proxy"])


@router.get("/favicon.ico", include_in_schema=False)
async def favicon():
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/")
async def proxy(
    request: Request,
    url: Optional[str] = Query(None, description="Absolute URL of the image to proxy"),
    bw: Optional[str] = Query(None, description="'0' disables grayscale"),
    l: Optional[str] = Query(None, description="WebP quality (1-100)"),
    webp: Optional[str] = Query(None, description="'1' when the client asked for WebP output"),
):
    try:
        proxy_request = ProxyRequest.parse(
            url,
            request.headers,
            client_host=request.client.host if request.client else None,
            bw=bw,
            l=l,
            webp=webp,
        )
    except ClientInputError as e:
        raise HTTPException(status_code=400, detail=str(e))

    state = request.app.state
    exchange = ProxyExchange(proxy_request, state.fetcher, state.settings, codec=state.codec)
    return await exchange.run()
