"""HTTP client module for duallink.

Provides :class:`AuthServiceClient`, a non-blocking client backed by
:class:`httpx.AsyncClient` for the authorization service's login, status,
token-exchange, and logout endpoints.

Example::

    from duallink.client import AuthServiceClient

    async with AuthServiceClient("https://api.example.com") as client:
        status = await client.check(request_id)
"""

from duallink.client.async_client import AuthServiceClient, error_detail

__all__ = ["AuthServiceClient", "error_detail"]
