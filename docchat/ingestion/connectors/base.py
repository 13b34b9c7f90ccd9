from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from docchat.models.schemas.document import DocumentType


@dataclass
class ConnectorResult:
    """Text extracted from one uploaded file, one entry per page."""

    pages: list[str]
    metadata: dict = field(default_factory=dict)

    @property
    def page_count(self) -> int:
        return len(self.pages)


class BaseConnector(ABC):
    """Abstract base class for all extraction connectors."""

    @abstractmethod
    async def extract(self, payload: bytes, document_type: DocumentType) -> ConnectorResult:
        """Extract per-page text and metadata from raw file bytes.

        Args:
            payload:       Complete file content.
            document_type: Type the content has already been verified as.

        Returns:
            ConnectorResult containing the page texts and metadata.

        Raises:
            ProcessingError: The content cannot be read.
        """
        ...
