"""Integration tests for supplier resolution against a real database."""

from __future__ import annotations

import uuid

from invoice_service.stores.supplier_store import SupplierStore

store = SupplierStore()


async def test_create_then_resolve_exact(db_pool, clean_tables, organization_id):
    async with db_pool.acquire() as conn:
        created = await store.upsert_supplier(conn, organization_id=organization_id, display_name="ACME Fournitures")
        again = await store.upsert_supplier(
            conn, organization_id=organization_id, display_name="Acme Fournitures S.A.R.L."
        )
        aliases = await conn.fetchval("SELECT count(*) FROM supplier_aliases")

    assert created.code == "ACMEFO-001"
    assert created.validation_status == "pending"
    assert created.is_active is False
    assert again.id == created.id
    assert aliases == 1


async def test_codes_increment_per_base(db_pool, clean_tables, organization_id, other_organization_id):
    async with db_pool.acquire() as conn:
        first = await store.upsert_supplier(conn, organization_id=organization_id, display_name="ACME Fournitures")
        second = await store.upsert_supplier(conn, organization_id=organization_id, display_name="Acme Fonderie")
        elsewhere = await store.upsert_supplier(
            conn, organization_id=other_organization_id, display_name="ACME Fournitures"
        )

    assert (first.code, second.code) == ("ACMEFO-001", "ACMEFO-002")
    assert elsewhere.code == "ACMEFO-001"
    assert elsewhere.id != first.id


async def test_fuzzy_match_only_against_validated(db_pool, clean_tables, organization_id):
    async with db_pool.acquire() as conn:
        base = await store.upsert_supplier(conn, organization_id=organization_id, display_name="ACME Fournitures")

        # Pending suppliers never absorb near matches.
        pending_match = await store.upsert_supplier(
            conn, organization_id=organization_id, display_name="ACME Fournitures Bureau"
        )
        assert pending_match.id != base.id

        await conn.execute(
            "UPDATE suppliers SET validation_status = 'validated', is_active = TRUE WHERE id = $1",
            uuid.UUID(base.id),
        )
        fuzzy = await store.upsert_supplier(
            conn, organization_id=organization_id, display_name="ACME Fournitures Paris"
        )
        alias = await store.find_by_alias(conn, organization_id=organization_id, key="acme fournitures paris")

    assert fuzzy.id == base.id
    assert alias is not None and alias.id == base.id


async def test_is_known(db_pool, clean_tables, organization_id, other_organization_id):
    async with db_pool.acquire() as conn:
        await store.upsert_supplier(conn, organization_id=organization_id, display_name="Dupont & Fils")
        assert await store.is_known(conn, organization_id=organization_id, name="DUPONT ET FILS") is False
        assert await store.is_known(conn, organization_id=organization_id, name="dupont fils sarl") is True
        assert await store.is_known(conn, organization_id=other_organization_id, name="Dupont & Fils") is False
