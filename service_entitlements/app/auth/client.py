"""
Auth client for Entitlements Service.
"""

from typing import Any, Dict, Optional

import httpx

from shared.logging import get_logger
from shared.errors import AuthenticationError, BackendUnavailable


class AuthClient:
    """Client for communicating with Auth Service."""

    def __init__(self, auth_service_url: str, timeout: float = 5.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.auth_service_url = auth_service_url.rstrip('/')
        self.logger = get_logger("entitlements.auth.client")
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def verify_token(self, token: str) -> Dict[str, Any]:
        """Verify a bearer token and return its claims.

        Raises AuthenticationError when the token is rejected and
        BackendUnavailable when the auth service cannot be reached.
        """
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.auth_service_url}/auth/verify",
                    json={"token": token}
                )
        except httpx.TimeoutException:
            self.logger.error("Auth service timeout")
            raise BackendUnavailable("Auth service timeout", code="AUTH_SERVICE_TIMEOUT")
        except httpx.RequestError as e:
            self.logger.error("Auth service request error", error=str(e))
            raise BackendUnavailable("Auth service unavailable", code="AUTH_SERVICE_ERROR")

        if response.status_code != 200:
            self.logger.warning("Token verification failed", status_code=response.status_code)
            raise AuthenticationError("Token verification failed")

        try:
            body = response.json()
        except ValueError:
            self.logger.warning("Auth service returned a non-JSON body")
            raise AuthenticationError("Token verification failed")

        if not body.get("valid"):
            raise AuthenticationError(body.get("error") or "Invalid token")

        claims = body.get("claims") or {}
        user_info = body.get("user_info") or {}
        if not claims.get("sub") and user_info.get("user_id"):
            claims = {**claims, "sub": user_info["user_id"]}
        return claims

    async def health_check(self) -> bool:
        """Check if auth service is healthy."""
        try:
            async with self._client() as client:
                response = await client.get(f"{self.auth_service_url}/health")
                return response.status_code == 200
        except httpx.HTTPError:
            return False
