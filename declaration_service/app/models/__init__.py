from .declaration_db import (
    DeclarationCreatePayload,
    DeclarationDB,
    DeclarationStats,
    SourceDeclarationSummaryDB,
)
from .stored_event_meta_data import StoredEventMetaData
from .stored_event_db import StoredEventDB

__all__ = [
    "DeclarationCreatePayload",
    "DeclarationDB",
    "DeclarationStats",
    "SourceDeclarationSummaryDB",
    "StoredEventMetaData",
    "StoredEventDB",
]
