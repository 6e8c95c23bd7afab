"""
Export targets.

The external project-management API sits behind Exporter. The recording
target stores the approved batch in the document store and hands back a
synthetic id, which is what runs in development and tests.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from ..core.config import ExportConfig
from ..core.dates import utcnow
from ..store import DocumentStore
from . import ExportResult

logger = logging.getLogger(__name__)


@dataclass
class ExportRequest:
    """An export that already passed preflight."""
    campaign_id: str
    campaign: Mapping[str, Any]
    result: ExportResult
    export_type: str = "campaign"
    include_metadata: bool = True
    project_id: Optional[str] = None
    requested_by: Optional[str] = None


@dataclass
class ExportReceipt:
    """Reference to the object created in the external system."""
    external_id: str
    external_url: str


class Exporter(ABC):
    """Irreversible hand-off to the external system."""

    @abstractmethod
    async def export(self, request: ExportRequest) -> ExportReceipt:
        """Send an approved batch; raise on failure."""


class RecordingExporter(Exporter):
    """Stores each batch in the ``exports`` collection."""

    def __init__(
        self,
        store: DocumentStore,
        config: Optional[ExportConfig] = None,
        collection: str = "exports",
    ):
        self.store = store
        self.config = config or ExportConfig()
        self.collection = collection

    async def export(self, request: ExportRequest) -> ExportReceipt:
        external_id = f"wrike_{request.campaign_id}_{int(time.time() * 1000)}"
        payload = request.result.to_dict()

        record: Dict[str, Any] = {
            "campaignId": request.campaign_id,
            "externalId": external_id,
            "exportType": request.export_type,
            "projectId": request.project_id,
            "exportedBy": request.requested_by,
            "exportedAt": utcnow().isoformat(),
            "status": "completed",
            "sheets": payload.get("sheets", {}),
        }
        if request.include_metadata:
            record["metadata"] = {
                "source": "campaigngate",
                "campaignTitle": request.campaign.get("title"),
                "rowCount": len(request.result.rows or []),
            }

        await self.store.set(self.collection, external_id, record)
        logger.info(f"Recorded export {external_id} for campaign {request.campaign_id}")

        return ExportReceipt(
            external_id=external_id,
            external_url=self.config.external_url_template.format(external_id=external_id),
        )
