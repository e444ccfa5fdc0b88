"""Apply the text heuristics to an extraction.

Order matters: header number/date overrides first, then the supplier header
candidate (subject to the known-supplier guard), then the supplier/client
collision guard, then field cleanup. Every override is recorded in
``heuristic_overrides`` as ``{"ai": <old>, "heuristic": <new>, "source": ...}``.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from invoice_service.pipeline import heuristics as h
from invoice_service.pipeline.config import PipelineConfig
from invoice_service.pipeline.schema import ExtractedInvoice

logger = logging.getLogger(__name__)

KnownSupplierCheck = Callable[[str | None], Awaitable[bool]]


async def _never_known(name: str | None) -> bool:
    return False


class PostProcessor:
    def __init__(self, *, cfg: PipelineConfig, is_known_supplier: KnownSupplierCheck = _never_known) -> None:
        self._cfg = cfg
        self._is_known_supplier = is_known_supplier

    async def apply(self, invoice: ExtractedInvoice, *, text: str, file_name: str | None) -> ExtractedInvoice:
        updates: dict[str, object] = {}
        overrides = dict(invoice.heuristic_overrides)

        def override(field: str, new: str | None, source: str) -> None:
            old = getattr(invoice, field)
            updates[field] = new
            overrides[field] = {"ai": old, "heuristic": new, "source": source}
            logger.info("Heuristic override %s: %r -> %r (%s)", field, old, new, source)

        # Header window: invoice number and date
        window = h.header_window(
            text,
            keywords=self._cfg.header_keywords,
            before=self._cfg.header_window_before,
            after=self._cfg.header_window_after,
        )
        if window is not None:
            number = h.find_invoice_number(window)
            if number and not h.same_value(number, invoice.invoice_number):
                override("invoice_number", number, "header_window")

            found_date = h.find_invoice_date(window)
            if found_date and found_date != h.normalize_date(invoice.invoice_date):
                override("invoice_date", found_date, "header_window")

        # Supplier header candidate
        supplier = invoice.supplier_name
        candidate = h.supplier_header_candidate(text, max_lines=self._cfg.supplier_scan_lines)
        if (
            candidate
            and not h.same_value(candidate, supplier)
            and not h.same_value(candidate, invoice.client_name)
        ):
            if supplier and await self._is_known_supplier(supplier):
                logger.info("Keeping known supplier %r over header candidate %r", supplier, candidate)
            else:
                override("supplier_name", candidate, "header_lines")
                supplier = candidate

        # Supplier/client collision
        if h.same_value(supplier, invoice.client_name):
            prefix = h.file_name_prefix(file_name)
            if prefix:
                override("supplier_name", prefix, "file_name")
            else:
                override("supplier_name", h.UNKNOWN_SUPPLIER, "collision")
                updates["supplier_needs_verification"] = True

        # Never propagate the client's identity as the supplier's
        if h.same_value(invoice.supplier_address, invoice.client_address):
            updates["supplier_address"] = None
        if h.same_value(invoice.supplier_vat_number, invoice.client_vat_number):
            updates["supplier_vat_number"] = None

        if not updates:
            return invoice
        updates["heuristic_overrides"] = overrides
        return invoice.model_copy(update=updates)
