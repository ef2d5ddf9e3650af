from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class HealthCheckResponse(BaseModel):
    """헬스 체크 응답 - 원장 저장소 연결 상태 포함"""

    status: str = Field("healthy", description="healthy | degraded")
    database: str = Field("ok", description="ok | unavailable")
    environment: str
    checked_at: datetime
    error: Optional[str] = None
