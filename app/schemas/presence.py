from pydantic import BaseModel
from typing import Optional
from datetime import datetime
import uuid


class PresenceResponse(BaseModel):
    user_id: uuid.UUID
    is_online: bool
    last_active_at: Optional[datetime] = None
    last_active_label: Optional[str] = None
