from __future__ import annotations

import logging
from dataclasses import dataclass

from google.cloud import documentai_v1 as documentai

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DocAIConfig:
    project: str
    location: str
    processor_id: str

    @property
    def processor_name(self) -> str:
        return f"projects/{self.project}/locations/{self.location}/processors/{self.processor_id}"


class DocumentAIEngine:
    """
    Document AI online OCR for single page images.

    Pages are sent one at a time (already rasterized and preprocessed by the
    rotation search), so the synchronous ``process_document`` call is enough.
    """

    name = "documentai"

    def __init__(self, *, cfg: DocAIConfig) -> None:
        self._cfg = cfg
        self._doc_client = documentai.DocumentProcessorServiceClient()

    def recognize(self, image_bytes: bytes) -> str:
        req = documentai.ProcessRequest(
            name=self._cfg.processor_name,
            raw_document=documentai.RawDocument(content=image_bytes, mime_type="image/png"),
        )
        resp = self._doc_client.process_document(request=req)
        text = resp.document.text or ""
        logger.debug(
            "Document AI returned %d chars (%d pages)",
            len(text),
            len(resp.document.pages) if resp.document.pages else 0,
        )
        return text
