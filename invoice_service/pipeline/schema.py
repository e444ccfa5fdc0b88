"""Pydantic schemas for the structured data the LLM is asked to return.

LLM output is loose: numbers arrive as "1 234,56 €", lists arrive as null,
keys we never asked for show up. Validators coerce what can be coerced and
drop the rest instead of failing the whole extraction.
"""

from __future__ import annotations

import re
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

_NUMBER_NOISE = re.compile(r"[^\d,.\-]")


def coerce_number(value: Any) -> float | None:
    """Parse a loosely formatted amount. Returns None when nothing usable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return float(value)
    text = _NUMBER_NOISE.sub("", str(value))
    if not text or text in {"-", ".", ","}:
        return None
    if "," in text and "." in text:
        # The right-most separator is the decimal one.
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif "," in text:
        head, _, tail = text.rpartition(",")
        head = head.replace(",", "")
        # "1,234" is a thousands separator, "12,5" a decimal comma.
        text = head + tail if len(tail) == 3 and head else f"{head}.{tail}"
    elif text.count(".") > 1:
        text = text.replace(".", "")
    try:
        return float(text)
    except ValueError:
        return None


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        if not value or value.lower() in {"null", "none", "n/a", "-"}:
            return None
    return value


class LineItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    description: str = ""
    reference: str | None = None
    quantity: float | None = None
    unit_price: float | None = None
    total_price: float | None = None
    tax_rate: float | None = None
    is_ht: bool = True

    @field_validator("description", mode="before")
    @classmethod
    def _description(cls, v: Any) -> str:
        return "" if v is None else str(v).strip()

    @field_validator("reference", mode="before")
    @classmethod
    def _reference(cls, v: Any) -> str | None:
        v = _blank_to_none(v)
        return None if v is None else str(v)

    @field_validator("quantity", "unit_price", "total_price", "tax_rate", mode="before")
    @classmethod
    def _numbers(cls, v: Any) -> float | None:
        return coerce_number(v)

    @field_validator("is_ht", mode="before")
    @classmethod
    def _is_ht(cls, v: Any) -> bool:
        if v is None:
            return True
        if isinstance(v, str):
            return v.strip().lower() not in {"false", "no", "non", "ttc", "0"}
        return bool(v)


class ExtractedInvoice(BaseModel):
    model_config = ConfigDict(extra="ignore")

    invoice_number: str | None = None
    invoice_date: str | None = None
    due_date: str | None = None
    total_amount: float | None = None
    tax_amount: float | None = None
    subtotal: float | None = None
    currency: str | None = None
    payment_terms: str | None = None
    notes: str | None = None
    document_type: str | None = None

    supplier_name: str | None = None
    supplier_address: str | None = None
    supplier_email: str | None = None
    supplier_phone: str | None = None
    supplier_vat_number: str | None = None

    client_name: str | None = None
    client_address: str | None = None
    client_email: str | None = None
    client_phone: str | None = None
    client_vat_number: str | None = None

    items: list[LineItem] = Field(default_factory=list)

    # Annotations written by the pipeline, never by the model.
    validation_notes: list[str] = Field(default_factory=list)
    heuristic_overrides: dict[str, dict[str, str | None]] = Field(default_factory=dict)
    supplier_needs_verification: bool = False

    @field_validator(
        "invoice_number",
        "invoice_date",
        "due_date",
        "currency",
        "payment_terms",
        "notes",
        "document_type",
        "supplier_name",
        "supplier_address",
        "supplier_email",
        "supplier_phone",
        "supplier_vat_number",
        "client_name",
        "client_address",
        "client_email",
        "client_phone",
        "client_vat_number",
        mode="before",
    )
    @classmethod
    def _strings(cls, v: Any) -> str | None:
        v = _blank_to_none(v)
        return None if v is None else str(v)

    @field_validator("total_amount", "tax_amount", "subtotal", mode="before")
    @classmethod
    def _amounts(cls, v: Any) -> float | None:
        return coerce_number(v)

    @field_validator("items", mode="before")
    @classmethod
    def _items(cls, v: Any) -> list[Any]:
        if not isinstance(v, list):
            return []
        return [i for i in v if isinstance(i, dict | LineItem)]

    def is_empty(self) -> bool:
        """No invoice number, no total, no supplier and no items."""
        return (
            not self.invoice_number
            and self.total_amount is None
            and not self.supplier_name
            and not self.items
        )

    def items_total(self) -> float:
        return round(sum(i.total_price or 0.0 for i in self.items), 2)


class InvoiceClassification(BaseModel):
    model_config = ConfigDict(extra="ignore")

    category: Literal["expense", "income", "tax", "other"] = "other"
    subcategory: str | None = None
    confidence: float = 0.0
    tags: list[str] = Field(default_factory=list)

    @field_validator("category", mode="before")
    @classmethod
    def _category(cls, v: Any) -> str:
        v = str(v or "").strip().lower()
        return v if v in {"expense", "income", "tax", "other"} else "other"

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v: Any) -> float:
        n = coerce_number(v)
        if n is None:
            return 0.0
        return min(max(n, 0.0), 1.0)

    @field_validator("tags", mode="before")
    @classmethod
    def _tags(cls, v: Any) -> list[str]:
        if not isinstance(v, list):
            return []
        return [str(t) for t in v if t]
