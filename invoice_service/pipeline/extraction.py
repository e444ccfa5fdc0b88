"""Prompts, retrieval context and response parsing for invoice extraction.

Invoices are mostly French, so the prompts are written in French; field
names stay in English because they are the JSON contract.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable

from pydantic import ValidationError

from invoice_service.chunking.chunker import chunk_text
from invoice_service.embedding import rank_chunks
from invoice_service.errors import ParseFailure
from invoice_service.pipeline.sanitizer import sanitize_response
from invoice_service.pipeline.schema import ExtractedInvoice, InvoiceClassification

logger = logging.getLogger(__name__)

Ranker = Callable[[str, list[str], int], Awaitable[list[int]]]

RETRIEVAL_QUERY = (
    "Numéro de facture, date de facture, fournisseur, client, montant total, TVA, "
    "lignes d'articles avec quantités et prix"
)

_EXTRACTION_TEMPLATE = """Vous êtes un expert en extraction de données de factures.
Analysez le texte suivant et extrayez toutes les informations pertinentes.

Fichier: {file_name}

Contexte:
{context}

Extrayez les informations suivantes au format JSON:
{{
  "invoice_number": "numéro de facture",
  "invoice_date": "date de facture (YYYY-MM-DD)",
  "due_date": "date d'échéance (YYYY-MM-DD)",
  "total_amount": montant_total_numerique,
  "tax_amount": montant_tva_numerique,
  "subtotal": sous_total_numerique,
  "document_type": "invoice|credit_note|quote|other",
  "supplier_name": "nom du fournisseur (émetteur de la facture)",
  "supplier_address": "adresse du fournisseur",
  "supplier_email": "email du fournisseur",
  "supplier_phone": "téléphone du fournisseur",
  "supplier_vat_number": "numéro TVA du fournisseur",
  "client_name": "nom du client (destinataire de la facture)",
  "client_address": "adresse du client",
  "client_email": "email du client",
  "client_phone": "téléphone du client",
  "client_vat_number": "numéro TVA du client",
  "items": [
    {{
      "description": "description de l'article",
      "reference": "référence de l'article",
      "quantity": quantite_numerique,
      "unit_price": prix_unitaire_numerique,
      "total_price": prix_total_numerique,
      "tax_rate": taux_tva_numerique,
      "is_ht": true
    }}
  ],
  "currency": "devise (EUR, USD, etc.)",
  "payment_terms": "conditions de paiement",
  "notes": "notes additionnelles"
}}

Le fournisseur est l'entreprise qui émet la facture, jamais le client.
Utilisez null pour toute valeur absente. N'inventez aucune valeur.
Répondez uniquement avec le JSON valide, sans texte supplémentaire."""

_CLASSIFICATION_TEMPLATE = """Analysez les données de facture suivantes et classifiez-les.

Données:
{data}

Retournez uniquement un JSON avec:
{{
  "category": "expense|income|tax|other",
  "subcategory": "sous-catégorie spécifique",
  "confidence": score_de_confiance_0_1,
  "tags": ["tag1", "tag2", "tag3"]
}}"""


def build_extraction_prompt(context: str, *, file_name: str) -> str:
    return _EXTRACTION_TEMPLATE.format(context=context, file_name=file_name or "inconnu")


def build_classification_prompt(invoice: ExtractedInvoice) -> str:
    data = invoice.model_dump(
        exclude={"validation_notes", "heuristic_overrides", "supplier_needs_verification"},
        exclude_none=True,
    )
    return _CLASSIFICATION_TEMPLATE.format(data=json.dumps(data, ensure_ascii=False, indent=2))


async def build_context(
    text: str,
    *,
    max_chars: int,
    top_k: int,
    ranker: Ranker = rank_chunks,
) -> str:
    """Return the text to put in the prompt.

    Text that fits in ``max_chars`` is used whole. Longer text is chunked and
    the ``top_k`` chunks most similar to the extraction query are kept in
    document order. If ranking fails the leading chunks are used.
    """
    if len(text) <= max_chars:
        return text

    chunks = chunk_text(text)
    if len(chunks) <= top_k:
        return "\n".join(chunks)

    try:
        selected = await ranker(RETRIEVAL_QUERY, chunks, top_k)
    except Exception:
        logger.exception("Chunk ranking failed; falling back to leading chunks")
        selected = list(range(top_k))

    logger.info("Retrieval context: %d/%d chunks selected (%d chars total)", len(selected), len(chunks), len(text))
    return "\n".join(chunks[i] for i in selected)


def parse_extraction(raw: str) -> ExtractedInvoice:
    """Sanitize and validate an extraction response.

    Raises:
        ParseFailure: The response holds no JSON object or does not validate.
    """
    parsed = sanitize_response(raw)
    if not parsed.ok:
        raise ParseFailure(f"unparseable extraction response: {parsed.error}", raw=raw or "")
    try:
        return ExtractedInvoice.model_validate(parsed.data)
    except ValidationError as e:
        raise ParseFailure(f"invalid extraction response: {e.error_count()} validation error(s)", raw=raw) from e


def parse_classification(raw: str) -> InvoiceClassification:
    """Best-effort: anything unusable becomes the default ``other`` classification."""
    parsed = sanitize_response(raw)
    if not parsed.ok:
        logger.warning("Classification response unusable (%s); defaulting to 'other'", parsed.error)
        return InvoiceClassification()
    try:
        return InvoiceClassification.model_validate(parsed.data)
    except ValidationError:
        logger.warning("Classification response failed validation; defaulting to 'other'", exc_info=True)
        return InvoiceClassification()
