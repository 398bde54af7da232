"""Engine configuration and connection / command state."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class EngineConfig(BaseModel):
    """Configuration for the sync engine."""

    base_url: str = "http://localhost:8000"
    events_path: str = "/events"            # SSE stream (GET)
    commands_path: str = "/events"          # Command intake (POST)
    schema_base_url: str = "http://localhost:8000/schemas"
    reconnect_delay_seconds: float = Field(ge=0, default=1.0)
    request_timeout_seconds: float = Field(gt=0, default=10.0)
    command_retry_attempts: int = Field(ge=0, default=3)
    command_retry_delay_seconds: float = Field(ge=0, default=0.5)
    rollback_on_reject: bool = False
    source: str = "casestream-client"
    actor: str = "casestream-user"

    @property
    def events_url(self) -> str:
        return self.base_url.rstrip("/") + self.events_path

    @property
    def commands_url(self) -> str:
        return self.base_url.rstrip("/") + self.commands_path


class ConnectionStatus(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class CommandState(str, Enum):
    SENDING = "sending"
    REJECTED = "rejected"


class PendingCommand(BaseModel):
    """An optimistically applied command, tracked by its event id."""

    event_id: str
    subject: Optional[str] = None
    state: CommandState = CommandState.SENDING
    attempts: int = 0
    submitted_at: datetime
    completed_at: Optional[datetime] = None
    status_code: Optional[int] = None
    reason: Optional[str] = None
