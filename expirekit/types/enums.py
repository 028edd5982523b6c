from enum import Enum

class EventType(str, Enum):
    ADD = "add"
    CONSUME = "consume"
    EXPIRE = "expire"
    DISCARD = "discard"

class Outcome(str, Enum):
    CONSUME = "consume"
    EXPIRE = "expire"
    DISCARD = "discard"

class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

class ItemStatus(str, Enum):
    ACTIVE = "active"
    CONSUMED = "consumed"
    EXPIRED = "expired"
    DISCARDED = "discarded"

TERMINAL_EVENTS = {EventType.CONSUME, EventType.EXPIRE, EventType.DISCARD}
