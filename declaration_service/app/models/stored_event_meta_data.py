from typing import Optional

from pydantic import BaseModel


class StoredEventMetaData(BaseModel):
    correlation_id: Optional[str] = None # wizard session that produced the event, when there is one
    causation_id: Optional[str] = None   # command ID
