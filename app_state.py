"""
Pipeline state for one browser session.

The stages run strictly forward (hero, genre input, analysis, level ideas,
prototype) and every move goes through TRANSITIONS, so a second request that
arrives while one is in flight is rejected instead of running alongside it.
"""
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Set

import gemini_service
from models import ApiErrorType, ApiServiceError, GameLevel, MarketAnalysis, PrototypeResult

logger = logging.getLogger(__name__)


class AppState(Enum):
    HERO = "HERO"
    ANALYSIS_INPUT = "ANALYSIS_INPUT"
    ANALYSIS_LOADING = "ANALYSIS_LOADING"
    IDEA_LOADING = "IDEA_LOADING"
    IDEA_COMPLETE = "IDEA_COMPLETE"
    PROTOTYPE_LOADING = "PROTOTYPE_LOADING"
    PROTOTYPE_COMPLETE = "PROTOTYPE_COMPLETE"


class Event(Enum):
    START = "START"
    SUBMIT_GENRE = "SUBMIT_GENRE"
    INVALID_GENRE = "INVALID_GENRE"
    ANALYSIS_READY = "ANALYSIS_READY"
    IDEAS_READY = "IDEAS_READY"
    SELECT_LEVEL = "SELECT_LEVEL"
    PROTOTYPE_READY = "PROTOTYPE_READY"
    FAILED = "FAILED"
    KEY_REJECTED = "KEY_REJECTED"


TRANSITIONS = {
    (AppState.HERO, Event.START): AppState.ANALYSIS_INPUT,
    (AppState.ANALYSIS_INPUT, Event.SUBMIT_GENRE): AppState.ANALYSIS_LOADING,
    (AppState.ANALYSIS_INPUT, Event.INVALID_GENRE): AppState.ANALYSIS_INPUT,
    (AppState.ANALYSIS_LOADING, Event.ANALYSIS_READY): AppState.IDEA_LOADING,
    (AppState.ANALYSIS_LOADING, Event.FAILED): AppState.ANALYSIS_INPUT,
    (AppState.ANALYSIS_LOADING, Event.KEY_REJECTED): AppState.ANALYSIS_INPUT,
    (AppState.IDEA_LOADING, Event.IDEAS_READY): AppState.IDEA_COMPLETE,
    (AppState.IDEA_LOADING, Event.FAILED): AppState.ANALYSIS_INPUT,
    (AppState.IDEA_LOADING, Event.KEY_REJECTED): AppState.ANALYSIS_INPUT,
    (AppState.IDEA_COMPLETE, Event.SELECT_LEVEL): AppState.PROTOTYPE_LOADING,
    (AppState.PROTOTYPE_COMPLETE, Event.SELECT_LEVEL): AppState.PROTOTYPE_LOADING,
    (AppState.PROTOTYPE_LOADING, Event.PROTOTYPE_READY): AppState.PROTOTYPE_COMPLETE,
    (AppState.PROTOTYPE_LOADING, Event.FAILED): AppState.IDEA_COMPLETE,
    (AppState.PROTOTYPE_LOADING, Event.KEY_REJECTED): AppState.ANALYSIS_INPUT,
}

EMPTY_GENRE_MESSAGE = "Please enter a game genre."

INVALID_KEY_MESSAGE = (
    "Your API Key is invalid or missing permissions. Please select a valid API key to continue."
)
RATE_LIMIT_MESSAGE = "You've exceeded the API rate limit. Please wait a moment and try again."
NETWORK_MESSAGE = "A network error occurred. Please check your connection and try again."

ANALYSIS_ERROR_MESSAGES = {
    ApiErrorType.INVALID_KEY: INVALID_KEY_MESSAGE,
    ApiErrorType.RATE_LIMIT: RATE_LIMIT_MESSAGE,
    ApiErrorType.NETWORK: NETWORK_MESSAGE,
    ApiErrorType.BAD_RESPONSE: "The AI returned a response that couldn't be understood. Please try again.",
    ApiErrorType.RESPONSE_BLOCKED: (
        "The AI's response was blocked due to content safety policies. "
        "Please try modifying your prompt."
    ),
    ApiErrorType.UNKNOWN: "An unknown error occurred while contacting the AI service. Please try again.",
}
ANALYSIS_FALLBACK_MESSAGE = "An unexpected error occurred. Please try again."

PROTOTYPE_UNKNOWN_MESSAGE = "An unknown error occurred while generating the prototype. Please try again."
PROTOTYPE_ERROR_MESSAGES = {
    ApiErrorType.INVALID_KEY: INVALID_KEY_MESSAGE,
    ApiErrorType.RATE_LIMIT: RATE_LIMIT_MESSAGE,
    ApiErrorType.NETWORK: NETWORK_MESSAGE,
    ApiErrorType.BAD_RESPONSE: PROTOTYPE_UNKNOWN_MESSAGE,
    ApiErrorType.RESPONSE_BLOCKED: (
        "The AI's response for the prototype was blocked due to content safety policies. "
        "This can sometimes happen with code generation. Please try again."
    ),
    ApiErrorType.UNKNOWN: PROTOTYPE_UNKNOWN_MESSAGE,
}
PROTOTYPE_FALLBACK_MESSAGE = "Failed to generate prototype. Please try again."

CONTROL_KEYS = ("ArrowLeft", "ArrowRight", "Space", "ArrowUp")


class InvalidTransition(RuntimeError):
    def __init__(self, state, event):
        super().__init__(f"Cannot handle {event.value} while in {state.value}")
        self.state = state
        self.event = event


@dataclass
class SessionState:
    stage: AppState = AppState.HERO
    genre: str = ""
    analysis: Optional[MarketAnalysis] = None
    levels: Optional[List[GameLevel]] = None
    prototype: Optional[PrototypeResult] = None
    error: Optional[str] = None
    api_key_selected: bool = False
    active_keys: Set[str] = field(default_factory=set)


def normalize_key(key):
    return "Space" if key == " " else key


class PipelineController:
    """Owns one SessionState and drives it through the generation pipeline.

    ``service`` needs the three gemini_service coroutines; ``host`` is the
    optional KeyHost. With no host the key is never considered selected.
    """

    def __init__(self, service=gemini_service, host=None):
        self.service = service
        self.host = host
        self.state = SessionState()
        self._lock = threading.Lock()

    def _transition(self, event):
        with self._lock:
            target = TRANSITIONS.get((self.state.stage, event))
            if target is None:
                raise InvalidTransition(self.state.stage, event)
            logger.debug("%s --%s--> %s", self.state.stage.value, event.value, target.value)
            if target is not AppState.PROTOTYPE_COMPLETE:
                self.state.active_keys.clear()
            self.state.stage = target

    async def check_api_key(self):
        if self.host is not None and await self.host.has_selected_api_key():
            self.state.api_key_selected = True
        return self.state.api_key_selected

    async def select_api_key(self):
        if self.host is None:
            return False
        await self.host.open_select_key()
        # The host gives no answer; a bad key surfaces as INVALID_KEY on the next call.
        self.state.api_key_selected = True
        return True

    def start_analysis(self):
        self._transition(Event.START)

    async def analyze_genre(self, genre):
        state = self.state
        if not genre or not genre.strip():
            self._transition(Event.INVALID_GENRE)
            state.error = EMPTY_GENRE_MESSAGE
            return

        self._transition(Event.SUBMIT_GENRE)
        state.genre = genre
        state.error = None
        state.analysis = None
        state.levels = None
        state.prototype = None

        try:
            analysis = await self.service.generate_market_analysis(genre)
            state.analysis = analysis
            self._transition(Event.ANALYSIS_READY)

            levels = await self.service.generate_game_levels(genre, analysis)
            state.levels = levels
            self._transition(Event.IDEAS_READY)
        except Exception as e:
            self._fail(e, ANALYSIS_ERROR_MESSAGES, ANALYSIS_FALLBACK_MESSAGE)

    async def generate_prototype(self, index):
        state = self.state
        if not state.levels or not 0 <= index < len(state.levels):
            raise IndexError(f"No level at index {index}")
        level = state.levels[index]

        self._transition(Event.SELECT_LEVEL)
        state.error = None

        try:
            state.prototype = await self.service.generate_prototype(level)
            self._transition(Event.PROTOTYPE_READY)
        except Exception as e:
            state.prototype = None
            self._fail(e, PROTOTYPE_ERROR_MESSAGES, PROTOTYPE_FALLBACK_MESSAGE)

    def _fail(self, exc, messages, fallback):
        logger.error("Pipeline step failed in %s: %r", self.state.stage.value, exc,
                     exc_info=not isinstance(exc, ApiServiceError))

        if isinstance(exc, ApiServiceError):
            self.state.error = messages.get(exc.type, fallback)
            key_rejected = exc.type is ApiErrorType.INVALID_KEY
        else:
            self.state.error = fallback
            key_rejected = False

        if key_rejected:
            self.state.api_key_selected = False
            self._transition(Event.KEY_REJECTED)
        else:
            self._transition(Event.FAILED)

    def press_key(self, key):
        key = normalize_key(key)
        if self.state.stage is AppState.PROTOTYPE_COMPLETE and key in CONTROL_KEYS:
            self.state.active_keys.add(key)

    def release_key(self, key):
        self.state.active_keys.discard(normalize_key(key))

    def snapshot(self):
        state = self.state
        return {
            "stage": state.stage.value,
            "genre": state.genre,
            "analysis": state.analysis,
            "levels": state.levels,
            "prototype": state.prototype.to_dict() if state.prototype else None,
            "error": state.error,
            "api_key_selected": state.api_key_selected,
            "active_keys": sorted(state.active_keys),
        }
