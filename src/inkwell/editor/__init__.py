"""Editor package containing the document model."""

from .document_model import Anchor, AppliedEdit, Bias, DocumentBuffer, DocumentMetadata, DocumentSnapshot

__all__ = ["Anchor", "AppliedEdit", "Bias", "DocumentBuffer", "DocumentMetadata", "DocumentSnapshot"]
