"""Reads and final writes for documents and document_items.

``save_extraction`` is the sink of the pipeline: it writes the extraction,
the line items and the ``completed`` status in one savepoint. A unique
violation on (organization_id, supplier_id, invoice_number) is the business
duplicate case and is raised as ``DuplicateInvoiceNumber`` with nothing
written; the caller then records the document through ``mark_duplicate``.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

import asyncpg

from invoice_service.errors import DuplicateInvoiceNumber
from invoice_service.pipeline.schema import ExtractedInvoice, InvoiceClassification
from invoice_service.pipeline.types import DocumentRecord

logger = logging.getLogger(__name__)

_INVOICE_NUMBER_INDEX = "documents_org_supplier_invoice_number_key"


class DocumentStore:
    """Stateless data-access object for documents and document_items."""

    async def get_document(self, conn: asyncpg.Connection, document_id: str) -> DocumentRecord | None:
        row = await conn.fetchrow(
            """
            SELECT id, organization_id, supplier_id, file_path, file_name, mime_type, status
            FROM documents
            WHERE id = $1
            """,
            uuid.UUID(document_id),
        )
        return DocumentRecord.from_row(row) if row else None

    async def get_status(self, conn: asyncpg.Connection, document_id: str) -> dict[str, Any] | None:
        row = await conn.fetchrow(
            "SELECT id, status, extracted_data, classification FROM documents WHERE id = $1",
            uuid.UUID(document_id),
        )
        return dict(row) if row else None

    async def set_status(self, conn: asyncpg.Connection, document_id: str, status: str) -> None:
        await conn.execute(
            "UPDATE documents SET status = $2, updated_at = NOW() WHERE id = $1",
            uuid.UUID(document_id),
            status,
        )

    async def mark_error(
        self,
        conn: asyncpg.Connection,
        document_id: str,
        *,
        error: str,
        needs_manual_review: bool = False,
    ) -> None:
        """Set status ``error`` and merge the reason into extracted_data."""
        await conn.execute(
            """
            UPDATE documents
            SET status = 'error',
                extracted_data = COALESCE(extracted_data, '{}'::jsonb) || $2::jsonb,
                updated_at = NOW()
            WHERE id = $1
            """,
            uuid.UUID(document_id),
            {"error": error, "needs_manual_review": needs_manual_review},
        )

    async def save_extraction(
        self,
        conn: asyncpg.Connection,
        *,
        document: DocumentRecord,
        invoice: ExtractedInvoice,
        classification: InvoiceClassification,
        supplier_id: str | None,
    ) -> int:
        """Persist a completed extraction; returns the number of items inserted.

        Raises:
            DuplicateInvoiceNumber: The organization already has this invoice
                number for this supplier.
        """
        doc_uuid = uuid.UUID(document.id)
        try:
            async with conn.transaction():
                await conn.execute(
                    """
                    UPDATE documents
                    SET status = 'completed',
                        extracted_data = $2,
                        classification = $3,
                        supplier_id = $4,
                        invoice_number = $5,
                        updated_at = NOW()
                    WHERE id = $1
                    """,
                    doc_uuid,
                    invoice.model_dump(mode="json"),
                    classification.model_dump(mode="json"),
                    uuid.UUID(supplier_id) if supplier_id else None,
                    invoice.invoice_number,
                )
                await conn.execute("DELETE FROM document_items WHERE document_id = $1", doc_uuid)
                if invoice.items:
                    await conn.executemany(
                        """
                        INSERT INTO document_items
                            (id, document_id, position, description, reference,
                             quantity, unit_price, total_price, tax_rate, is_ht)
                        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                        """,
                        [
                            (
                                uuid.uuid4(),
                                doc_uuid,
                                pos,
                                item.description,
                                item.reference,
                                item.quantity,
                                item.unit_price,
                                item.total_price,
                                item.tax_rate,
                                item.is_ht,
                            )
                            for pos, item in enumerate(invoice.items)
                        ],
                    )
        except asyncpg.UniqueViolationError as e:
            if e.constraint_name not in (None, _INVOICE_NUMBER_INDEX):
                raise
            logger.info(
                "Duplicate invoice number %r for document %s (supplier=%s)",
                invoice.invoice_number,
                document.id,
                supplier_id,
            )
            raise DuplicateInvoiceNumber(invoice.invoice_number, supplier_id=supplier_id) from e

        return len(invoice.items)

    async def mark_duplicate(
        self,
        conn: asyncpg.Connection,
        *,
        document: DocumentRecord,
        invoice: ExtractedInvoice,
        classification: InvoiceClassification,
        supplier_id: str | None,
    ) -> None:
        """Keep the extraction for review but leave invoice_number unset and insert no items."""
        await conn.execute(
            """
            UPDATE documents
            SET status = 'duplicate',
                extracted_data = $2,
                classification = $3,
                supplier_id = $4,
                invoice_number = NULL,
                updated_at = NOW()
            WHERE id = $1
            """,
            uuid.UUID(document.id),
            {**invoice.model_dump(mode="json"), "duplicate_of_invoice_number": invoice.invoice_number},
            classification.model_dump(mode="json"),
            uuid.UUID(supplier_id) if supplier_id else None,
        )
