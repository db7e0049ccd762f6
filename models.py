from dataclasses import dataclass
from enum import Enum
from typing import List, TypedDict


class MarketAnalysis(TypedDict):
    trends: List[str]
    mechanics: List[str]
    monetization: List[str]


class Position(TypedDict):
    x: float
    y: float


class Entity(TypedDict):
    type: str
    position: Position


class GameLevel(TypedDict):
    level_description: str
    tilemap: List[List[str]]
    entities: List[Entity]
    player_start: Position
    goal_position: Position
    solvable_path: List[Position]
    validity_check: str


@dataclass(frozen=True)
class PrototypeResult:
    """Either playable markup ("html") or an explanation of why none was made ("text")."""

    type: str
    content: str

    @classmethod
    def html(cls, content):
        return cls(type="html", content=content)

    @classmethod
    def text(cls, content):
        return cls(type="text", content=content)

    def to_dict(self):
        return {"type": self.type, "content": self.content}


class ApiErrorType(str, Enum):
    INVALID_KEY = "INVALID_KEY"
    RATE_LIMIT = "RATE_LIMIT"
    NETWORK = "NETWORK"
    BAD_RESPONSE = "BAD_RESPONSE"
    RESPONSE_BLOCKED = "RESPONSE_BLOCKED"
    UNKNOWN = "UNKNOWN"


class ApiServiceError(Exception):
    """The only error raised by gemini_service; `type` says what went wrong."""

    def __init__(self, kind, message):
        super().__init__(message)
        self.type = ApiErrorType(kind)
        self.message = message

    def __repr__(self):
        return f"ApiServiceError({self.type.value}, {self.message!r})"
