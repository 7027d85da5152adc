"""
FastAPI dependencies for authenticated, module-gated routes.

The service instance is published on ``app.state.entitlements`` and must
expose ``auth_client`` and ``evaluator``.
"""

from typing import Any, Awaitable, Callable, Optional

from fastapi import Depends, Header, Query, Request

from shared.errors import AuthenticationError
from shared.logging import set_user_context
from .models import AccessDecision, EvaluateOptions, Requester


def get_entitlements_service(request: Request) -> Any:
    return request.app.state.entitlements


def _bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise AuthenticationError("Missing bearer token")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Missing bearer token")
    return token.strip()


async def get_requester(
    service: Any = Depends(get_entitlements_service),
    authorization: Optional[str] = Header(None)
) -> Requester:
    """Verify the bearer token and normalize its claims."""
    claims = await service.auth_client.verify_token(_bearer_token(authorization))
    try:
        requester = Requester.from_claims(claims)
    except ValueError as e:
        raise AuthenticationError(str(e))
    set_user_context(user_id=requester.user_id)
    return requester


def get_evaluate_options(
    org_id: Optional[str] = Query(None, description="Requested organization"),
    x_org_id: Optional[str] = Header(None),
    fresh: bool = Query(False, description="Skip the decision cache"),
    strict: bool = Query(False, description="Disable the platform-admin bypass")
) -> EvaluateOptions:
    return EvaluateOptions(
        query_org_id=org_id,
        header_org_id=x_org_id,
        bypass_cache=fresh,
        allow_platform_bypass=not strict
    )


def require_module_access(
    module_key: str,
    allow_platform_bypass: bool = True,
    forbidden_message: Optional[str] = None
) -> Callable[..., Awaitable[AccessDecision]]:
    """Build a dependency that lets a route run only when ``module_key`` is allowed.

    Usage::

        @app.get("/quotes", dependencies=[Depends(require_module_access("quoting_proposals"))])
    """

    async def dependency(
        request: Request,
        service: Any = Depends(get_entitlements_service),
        requester: Requester = Depends(get_requester)
    ) -> AccessDecision:
        options = EvaluateOptions(
            query_org_id=request.query_params.get("org_id"),
            header_org_id=request.headers.get("x-org-id"),
            allow_platform_bypass=allow_platform_bypass
        )
        decision = await service.evaluator.require(
            module_key, requester, options, forbidden_message=forbidden_message
        )
        set_user_context(user_id=requester.user_id, org_id=decision.org_id)
        return decision

    return dependency
