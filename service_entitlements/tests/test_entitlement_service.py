"""
Unit tests for the entitlement write and read operations.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from shared.errors import BackendError, DependencyViolation, NotFoundError, ValidationError
from shared.metrics import MetricsCollector
from service_entitlements.app.access.models import AccessDecision, DecisionReason
from service_entitlements.app.audit import ENTITLEMENT_UPDATE_ACTION, AuditSink
from service_entitlements.app.entitlements.models import (
    BillingModel, EntitlementStatus, EntitlementUpdateRequest
)
from service_entitlements.app.entitlements.service import EntitlementService
from conftest import ADMIN, ORG_A, ORG_B, ORG_UNKNOWN

START = datetime(2025, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def metrics():
    return MetricsCollector("entitlements")


@pytest.fixture
def audit(store):
    return AuditSink(store)


@pytest.fixture
def service(catalog, store, cache, audit, metrics):
    return EntitlementService(catalog, store, cache, audit, metrics=metrics)


def body(**fields):
    return EntitlementUpdateRequest(**fields)


class TestUpdateEntitlement:
    """Test cases for EntitlementService.update_entitlement."""

    @pytest.mark.asyncio
    async def test_first_write_fills_defaults(self, service):
        saved = await service.update_entitlement(ORG_A, "products_bom", body(enabled=True), actor=ADMIN)
        assert saved.enabled is True
        assert saved.billing_model == BillingModel.MANUAL
        assert saved.status == EntitlementStatus.ACTIVE
        assert saved.source == "platform-admin"
        assert saved.updated_by == ADMIN
        assert saved.updated_at is not None

    @pytest.mark.asyncio
    async def test_unsupplied_fields_keep_current_values(self, service, store):
        store.set_entitlement(
            ORG_A, "products_bom", enabled=True, billing_model=BillingModel.SUBSCRIPTION,
            status=EntitlementStatus.GRACE, notes="renewal pending", source="billing-sync"
        )
        saved = await service.update_entitlement(ORG_A, "products_bom", body(billing_model="trial"))
        assert saved.enabled is True
        assert saved.billing_model == BillingModel.TRIAL
        assert saved.status == EntitlementStatus.GRACE
        assert saved.notes == "renewal pending"
        assert saved.source == "billing-sync"

    @pytest.mark.asyncio
    async def test_explicit_null_clears_nullable_fields(self, service, store):
        store.set_entitlement(ORG_A, "products_bom", enabled=True, notes="old", ends_at=START)
        saved = await service.update_entitlement(ORG_A, "products_bom", body(notes=None, ends_at=None))
        assert saved.notes is None
        assert saved.ends_at is None

    @pytest.mark.asyncio
    async def test_notes_are_trimmed(self, service):
        saved = await service.update_entitlement(ORG_A, "products_bom", body(notes="  annual deal \n"))
        assert saved.notes == "annual deal"

    @pytest.mark.asyncio
    async def test_blank_notes_clear_stored_value(self, service, store):
        store.set_entitlement(ORG_A, "products_bom", enabled=True, notes="renewal pending")
        saved = await service.update_entitlement(ORG_A, "products_bom", body(notes="   "))
        assert saved.notes is None

    @pytest.mark.asyncio
    async def test_inputs_are_normalized(self, service):
        saved = await service.update_entitlement(
            ORG_A.upper(), " Products_BOM ", body(enabled=True, status=" Grace ")
        )
        assert saved.org_id == ORG_A
        assert saved.module_key == "products_bom"
        assert saved.status == EntitlementStatus.GRACE

    @pytest.mark.asyncio
    async def test_invalid_org_id(self, service):
        with pytest.raises(ValidationError):
            await service.update_entitlement("acme", "products_bom", body(enabled=True))

    @pytest.mark.asyncio
    async def test_unknown_org(self, service, store):
        with pytest.raises(NotFoundError):
            await service.update_entitlement(ORG_UNKNOWN, "products_bom", body(enabled=True))
        assert store.calls["upsert_entitlement"] == 0

    @pytest.mark.asyncio
    async def test_malformed_module_key(self, service):
        with pytest.raises(ValidationError):
            await service.update_entitlement(ORG_A, "products-bom!", body(enabled=True))

    @pytest.mark.asyncio
    async def test_unknown_module(self, service):
        with pytest.raises(NotFoundError):
            await service.update_entitlement(ORG_A, "time_travel", body(enabled=True))

    @pytest.mark.asyncio
    async def test_not_found_is_reported_before_bad_enum(self, service):
        with pytest.raises(NotFoundError):
            await service.update_entitlement(ORG_UNKNOWN, "products_bom", body(status="frozen"))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("fields", [{"billing_model": "barter"}, {"status": "frozen"}])
    async def test_bad_enum_values(self, service, fields):
        with pytest.raises(ValidationError) as exc_info:
            await service.update_entitlement(ORG_A, "products_bom", body(**fields))
        assert "allowed" in exc_info.value.details

    @pytest.mark.asyncio
    @pytest.mark.parametrize("ends_at", [START, START - timedelta(days=1)])
    async def test_window_must_end_after_start(self, service, store, ends_at):
        with pytest.raises(ValidationError):
            await service.update_entitlement(
                ORG_A, "products_bom", body(enabled=False, starts_at=START, ends_at=ends_at, notes="x")
            )
        assert store.calls["upsert_entitlement"] == 0

    @pytest.mark.asyncio
    async def test_window_checked_against_stored_bound(self, service, store):
        store.set_entitlement(ORG_A, "products_bom", enabled=True, starts_at=START)
        with pytest.raises(ValidationError):
            await service.update_entitlement(ORG_A, "products_bom", body(ends_at=START - timedelta(hours=1)))

    @pytest.mark.asyncio
    async def test_dependency_violation_writes_nothing(self, service, store):
        with pytest.raises(DependencyViolation) as exc_info:
            await service.update_entitlement(ORG_A, "orders_fulfillment", body(enabled=True))
        assert exc_info.value.missing_dependencies == ["products_bom"]
        assert (ORG_A, "orders_fulfillment") not in store.entitlements
        assert store.calls["upsert_entitlement"] == 0

    @pytest.mark.asyncio
    async def test_resubmitting_same_value_revalidates(self, service, store):
        store.set_entitlement(ORG_A, "products_bom", enabled=False)
        store.set_entitlement(ORG_A, "orders_fulfillment", enabled=True)
        with pytest.raises(DependencyViolation):
            await service.update_entitlement(ORG_A, "products_bom", body(enabled=False))

    @pytest.mark.asyncio
    async def test_status_transitions_are_unrestricted(self, service, store):
        store.set_entitlement(ORG_A, "products_bom", enabled=True, status=EntitlementStatus.CANCELED)
        saved = await service.update_entitlement(ORG_A, "products_bom", body(status="active"))
        assert saved.status == EntitlementStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_audit_record_is_emitted(self, service, store, audit):
        store.set_entitlement(ORG_A, "products_bom", enabled=False, status=EntitlementStatus.INACTIVE)
        await service.update_entitlement(ORG_A, "products_bom", body(enabled=True, status="active"), actor=ADMIN)
        await audit.drain()

        assert len(store.audit_log) == 1
        record = store.audit_log[0]
        assert record["actor"] == ADMIN
        assert record["action"] == ENTITLEMENT_UPDATE_ACTION
        assert record["target"] == f"{ORG_A}:products_bom"
        assert record["metadata"]["module_name"] == "Products & Bill of Materials"
        assert record["metadata"]["before"]["status"] == "inactive"
        assert record["metadata"]["after"]["status"] == "active"
        assert record["metadata"]["after"]["enabled"] is True

    @pytest.mark.asyncio
    async def test_audit_failure_does_not_fail_the_write(self, service, store, audit):
        store.fail_on["record_audit"] = BackendError("audit table locked")
        saved = await service.update_entitlement(ORG_A, "products_bom", body(enabled=True))
        await audit.drain()
        assert saved.enabled is True
        assert store.entitlements[(ORG_A, "products_bom")].enabled is True

    @pytest.mark.asyncio
    async def test_write_invalidates_org_decisions(self, service, cache):
        decision = AccessDecision("products_bom", ORG_A, False, False, DecisionReason.NOT_ENTITLED)
        other = AccessDecision("products_bom", ORG_B, False, False, DecisionReason.NOT_ENTITLED)
        await cache.set(f"u1|products_bom|{ORG_A}|member|bypass", decision)
        await cache.set(f"u2|products_bom|{ORG_B}|member|bypass", other)

        await service.update_entitlement(ORG_A, "products_bom", body(enabled=True))

        assert await cache.get(f"u1|products_bom|{ORG_A}|member|bypass") is None
        assert await cache.get(f"u2|products_bom|{ORG_B}|member|bypass") == other

    @pytest.mark.asyncio
    async def test_concurrent_interdependent_writes_are_serialized(self, service, store):
        store.set_entitlement(ORG_A, "products_bom", enabled=True)

        results = await asyncio.gather(
            service.update_entitlement(ORG_A, "cutlist_optimizer", body(enabled=True)),
            service.update_entitlement(ORG_A, "products_bom", body(enabled=False)),
            return_exceptions=True
        )

        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], DependencyViolation)
        cutlist = store.entitlements.get((ORG_A, "cutlist_optimizer"))
        bom = store.entitlements[(ORG_A, "products_bom")]
        assert not (cutlist is not None and cutlist.enabled and not bom.enabled)

    @pytest.mark.asyncio
    async def test_mutation_outcomes_are_counted(self, service, metrics):
        await service.update_entitlement(ORG_A, "products_bom", body(enabled=True))
        with pytest.raises(DependencyViolation):
            await service.update_entitlement(ORG_A, "purchasing_purchase_orders", body(enabled=True))
        registry = metrics.registry
        assert registry.get_sample_value("entitlement_mutations_total", {"outcome": "success"}) == 1
        assert registry.get_sample_value(
            "entitlement_mutations_total", {"outcome": "dependency_violation"}
        ) == 1


class TestListOrgEntitlements:
    """Test cases for EntitlementService.list_org_entitlements."""

    @pytest.mark.asyncio
    async def test_one_row_per_catalog_module(self, service, store, catalog):
        store.set_entitlement(ORG_A, "products_bom", enabled=True, billing_model=BillingModel.YEARLY_LICENSE)

        response = await service.list_org_entitlements(ORG_A)

        assert response.org_id == ORG_A
        assert [m.module_key for m in response.modules] == [m.key for m in catalog.modules()]
        rows = {m.module_key: m for m in response.modules}
        assert rows["products_bom"].enabled is True
        assert rows["products_bom"].billing_model == BillingModel.YEARLY_LICENSE
        assert rows["products_bom"].status == EntitlementStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_missing_rows_get_defaults(self, service):
        response = await service.list_org_entitlements(ORG_B)
        for row in response.modules:
            assert row.enabled is False
            assert row.status == EntitlementStatus.INACTIVE
            assert row.billing_model == BillingModel.MANUAL

    @pytest.mark.asyncio
    async def test_dependency_keys_are_listed(self, service):
        response = await service.list_org_entitlements(ORG_A)
        rows = {m.module_key: m for m in response.modules}
        assert rows["furniture_configurator"].dependency_keys == ["cutlist_optimizer", "products_bom"]

    @pytest.mark.asyncio
    async def test_unknown_org(self, service):
        with pytest.raises(NotFoundError):
            await service.list_org_entitlements(ORG_UNKNOWN)

    @pytest.mark.asyncio
    async def test_invalid_org_id(self, service):
        with pytest.raises(ValidationError):
            await service.list_org_entitlements("acme")
