from fastapi import Request
import httpx

from declaration_service.app.service.exceptions import ConfigurationError


async def get_http_client(request: Request) -> httpx.AsyncClient:
    """
    FastAPI dependency provider for the shared httpx.AsyncClient used to reach the Verification Service.
    The client is created on startup and kept on `request.app.state.http_client`.
    """
    http_client = getattr(request.app.state, "http_client", None)
    if http_client is None:
        raise ConfigurationError("Shared HTTP client is not initialized; was the startup event run?")
    return http_client
