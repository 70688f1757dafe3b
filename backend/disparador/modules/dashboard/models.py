# disparador/modules/dashboard/models.py
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel

from disparador.models.api_common import ApiId

SessionDisplayStatus = Literal["connected", "qr_pending", "disconnected"]

class SessionDetailsAPI(BaseModel):
    push_name: Optional[str] = None
    phone: Optional[str] = None
    last_connected_at: Optional[datetime] = None

class DailyStatsAPI(BaseModel):
    messages_sent: int = 0
    failures: int = 0
    groups_reached: int = 0
    link_clicks: int = 0

class QueueItemAPI(BaseModel):
    id: ApiId
    title: Optional[str] = None
    status: Optional[str] = None
    scheduled_at: Optional[datetime] = None

class QueueAPI(BaseModel):
    running: List[QueueItemAPI] = []
    upcoming: List[QueueItemAPI] = []
    paused: List[QueueItemAPI] = []

class DashboardAPI(BaseModel):
    session_status: SessionDisplayStatus
    session_details: SessionDetailsAPI
    daily_stats: DailyStatsAPI
    queue: QueueAPI
    alerts: List[str] = []
