"""
Entitlements Service package for the Module Access Layer.

This package decides whether an organization may use a feature module and
lets platform administrators manage those entitlements. It provides:

- app.main: API surface for access checks, entitlement management and health.
- app.catalog: Module catalog and its dependency graph.
- app.orgs: Organization membership and org-context resolution.
- app.access: Access evaluation, platform-admin checks and FastAPI guards.
- app.entitlements: Entitlement writes with dependency enforcement.
- app.cache: In-memory and Redis-backed caching for access decisions.
- app.persistence: PostgreSQL storage for catalog, memberships and entitlements.

Guidelines:
- The service is stateless apart from the decision cache.
- A storage failure is never reported as "not entitled".
- Writes for one organization are serialized so dependency checks hold.
"""
