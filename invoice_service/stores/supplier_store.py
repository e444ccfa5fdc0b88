"""Supplier resolution: map an extracted supplier name to a supplier row.

Resolution order for a name within an organization:

1. exact ``normalized_key`` match;
2. a recorded alias (``supplier_aliases.alias_key``);
3. a strict fuzzy match against *validated* suppliers (word-level Dice
   coefficient >= 0.8, words longer than two characters), recording the
   alias so the next lookup is exact;
4. otherwise a new supplier is created with ``validation_status='pending'``,
   ``is_active=false`` and a generated code such as ``ACMEIN-001``.
"""

from __future__ import annotations

import logging
import re
import unicodedata
import uuid
from dataclasses import dataclass
from typing import Any

import asyncpg

logger = logging.getLogger(__name__)

FUZZY_THRESHOLD = 0.8

_STOPWORDS = re.compile(
    r"\b(?:sas|sasu|sarl|sa|eurl|spa|ltd|inc|societe|maison|ste|ets|etablissement|les|des|du|de|la|le|l)\b"
)


@dataclass(frozen=True)
class Supplier:
    id: str
    organization_id: str
    code: str
    display_name: str
    normalized_key: str
    validation_status: str  # pending|validated|rejected
    is_active: bool

    @classmethod
    def from_row(cls, row: Any) -> Supplier:
        return cls(
            id=str(row["id"]),
            organization_id=str(row["organization_id"]),
            code=row["code"],
            display_name=row["display_name"],
            normalized_key=row["normalized_key"],
            validation_status=row["validation_status"],
            is_active=bool(row["is_active"]),
        )


def normalize_supplier(name: str | None) -> str:
    """Accent-free, lowercase, punctuation-free key with legal forms removed.

    >>> normalize_supplier("Société Générale S.A.S.")
    'generale'
    """
    decomposed = unicodedata.normalize("NFD", str(name or ""))
    text = "".join(ch for ch in decomposed if not unicodedata.combining(ch)).lower()
    text = re.sub(r"[^a-z0-9]+", " ", text.replace(".", ""))
    text = _STOPWORDS.sub(" ", text)
    return " ".join(text.split())


def supplier_code_base(key: str) -> str:
    """First six alphanumerics of the key, uppercased, padded to four with X."""
    return re.sub(r"[^a-z0-9]", "", key).upper()[:6].ljust(4, "X")


def word_similarity(a: str, b: str) -> float:
    """Dice coefficient over the sets of words longer than two characters."""
    wa = {w for w in a.split() if len(w) > 2}
    wb = {w for w in b.split() if len(w) > 2}
    if not wa or not wb:
        return 0.0
    return 2 * len(wa & wb) / (len(wa) + len(wb))


class SupplierStore:
    """Stateless data-access object for suppliers and supplier_aliases."""

    async def find_by_normalized_key(
        self,
        conn: asyncpg.Connection,
        *,
        organization_id: str,
        key: str,
    ) -> Supplier | None:
        if not key:
            return None
        row = await conn.fetchrow(
            "SELECT * FROM suppliers WHERE organization_id = $1 AND normalized_key = $2",
            uuid.UUID(organization_id),
            key,
        )
        return Supplier.from_row(row) if row else None

    async def find_by_alias(
        self,
        conn: asyncpg.Connection,
        *,
        organization_id: str,
        key: str,
    ) -> Supplier | None:
        row = await conn.fetchrow(
            """
            SELECT s.*
            FROM supplier_aliases a
            JOIN suppliers s ON s.id = a.supplier_id
            WHERE s.organization_id = $1 AND a.alias_key = $2
            LIMIT 1
            """,
            uuid.UUID(organization_id),
            key,
        )
        return Supplier.from_row(row) if row else None

    async def is_known(self, conn: asyncpg.Connection, *, organization_id: str, name: str | None) -> bool:
        """True when the organization already has a supplier under this name's key."""
        key = normalize_supplier(name)
        if not key:
            return False
        return await self.find_by_normalized_key(conn, organization_id=organization_id, key=key) is not None

    async def _add_alias(self, conn: asyncpg.Connection, supplier_id: str, key: str) -> None:
        await conn.execute(
            """
            INSERT INTO supplier_aliases (supplier_id, alias_key)
            VALUES ($1, $2)
            ON CONFLICT (supplier_id, alias_key) DO NOTHING
            """,
            uuid.UUID(supplier_id),
            key,
        )

    async def _fuzzy_match(self, conn: asyncpg.Connection, *, organization_id: str, key: str) -> Supplier | None:
        rows = await conn.fetch(
            """
            SELECT * FROM suppliers
            WHERE organization_id = $1 AND validation_status = 'validated'
            ORDER BY created_at ASC
            """,
            uuid.UUID(organization_id),
        )
        best: tuple[float, Any] | None = None
        for row in rows:
            score = word_similarity(key, row["normalized_key"] or "")
            if score >= FUZZY_THRESHOLD and (best is None or score > best[0]):
                best = (score, row)
        if best is None:
            return None
        logger.info("Fuzzy supplier match %r -> %r (%.0f%%)", key, best[1]["display_name"], best[0] * 100)
        return Supplier.from_row(best[1])

    async def _next_code(self, conn: asyncpg.Connection, *, organization_id: str, key: str) -> str:
        base = supplier_code_base(key)
        taken = {
            r["code"]
            for r in await conn.fetch(
                "SELECT code FROM suppliers WHERE organization_id = $1 AND code LIKE $2",
                uuid.UUID(organization_id),
                f"{base}-%",
            )
        }
        idx = 1
        while f"{base}-{idx:03d}" in taken:
            idx += 1
        return f"{base}-{idx:03d}"

    async def upsert_supplier(
        self,
        conn: asyncpg.Connection,
        *,
        organization_id: str,
        display_name: str | None,
    ) -> Supplier | None:
        """Resolve or create the supplier for ``display_name``; None for a blank name."""
        key = normalize_supplier(display_name)
        if not key:
            return None

        if existing := await self.find_by_normalized_key(conn, organization_id=organization_id, key=key):
            return existing
        if aliased := await self.find_by_alias(conn, organization_id=organization_id, key=key):
            return aliased
        if fuzzy := await self._fuzzy_match(conn, organization_id=organization_id, key=key):
            await self._add_alias(conn, fuzzy.id, key)
            return fuzzy

        code = await self._next_code(conn, organization_id=organization_id, key=key)
        row = await conn.fetchrow(
            """
            INSERT INTO suppliers
                (id, organization_id, code, display_name, normalized_key, validation_status, is_active)
            VALUES ($1, $2, $3, $4, $5, 'pending', FALSE)
            ON CONFLICT (organization_id, normalized_key) DO UPDATE
                SET updated_at = NOW()
            RETURNING *
            """,
            uuid.uuid4(),
            uuid.UUID(organization_id),
            code,
            display_name,
            key,
        )
        supplier = Supplier.from_row(row)
        await self._add_alias(conn, supplier.id, key)
        logger.info("Created pending supplier %s (%s) for organization %s", supplier.code, display_name, organization_id)
        return supplier
