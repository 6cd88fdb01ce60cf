import datetime
import uuid
from typing import Dict, Any

from pydantic import BaseModel, Field

from .stored_event_meta_data import StoredEventMetaData


class StoredEventDB(BaseModel): # Declaration lifecycle events as stored in MongoDB
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_type: str
    aggregate_id: str # declaration ID as string
    timestamp: datetime.datetime = Field(default_factory=lambda: datetime.datetime.now(datetime.UTC))
    version: int = 1
    payload: Dict[str, Any] # JSON-mode dump of the domain event payload
    metadata: StoredEventMetaData = Field(default_factory=StoredEventMetaData)
