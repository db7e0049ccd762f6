"""
Gemini calls behind the three pipeline steps.

Every public coroutine raises ApiServiceError and nothing else, so callers can
branch on ``err.type`` without knowing anything about google-genai or httpx.
"""
import json
import logging

import httpx
from google import genai
from google.genai import errors, types

import config
from models import ApiErrorType, ApiServiceError, PrototypeResult
from prompts import (
    LEVEL_DESIGN_PROMPT,
    MARKET_ANALYSIS_PROMPT,
    PROTOTYPE_PROMPT,
    PROTOTYPE_STYLE,
    UNFEASIBLE_MARKER,
)

logger = logging.getLogger(__name__)

LEVEL_COUNT = 2


def _string_list(description):
    return types.Schema(
        type=types.Type.ARRAY,
        items=types.Schema(type=types.Type.STRING),
        description=description,
    )


def _position_schema():
    return types.Schema(
        type=types.Type.OBJECT,
        properties={
            "x": types.Schema(type=types.Type.NUMBER),
            "y": types.Schema(type=types.Type.NUMBER),
        },
        required=["x", "y"],
    )


MARKET_ANALYSIS_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "trends": _string_list("Current market trends for the genre."),
        "mechanics": _string_list("Popular gameplay mechanics in the genre."),
        "monetization": _string_list("Successful monetization patterns for the genre."),
    },
    required=["trends", "mechanics", "monetization"],
)

GAME_LEVELS_SCHEMA = types.Schema(
    type=types.Type.ARRAY,
    items=types.Schema(
        type=types.Type.OBJECT,
        properties={
            "level_description": types.Schema(type=types.Type.STRING),
            "tilemap": types.Schema(
                type=types.Type.ARRAY,
                items=types.Schema(
                    type=types.Type.ARRAY,
                    items=types.Schema(type=types.Type.STRING),
                ),
            ),
            "entities": types.Schema(
                type=types.Type.ARRAY,
                items=types.Schema(
                    type=types.Type.OBJECT,
                    properties={
                        "type": types.Schema(type=types.Type.STRING),
                        "position": _position_schema(),
                    },
                    required=["type", "position"],
                ),
            ),
            "player_start": _position_schema(),
            "goal_position": _position_schema(),
            "solvable_path": types.Schema(
                type=types.Type.ARRAY,
                items=_position_schema(),
            ),
            "validity_check": types.Schema(type=types.Type.STRING),
        },
        required=[
            "level_description",
            "tilemap",
            "entities",
            "player_start",
            "goal_position",
            "solvable_path",
            "validity_check",
        ],
    ),
)


def classify_error(exc):
    """Map anything raised while talking to Gemini onto an ApiServiceError.

    Status codes from google-genai are trusted first; otherwise this falls back
    to sniffing the message, which only works while upstream wording is stable.
    """
    if isinstance(exc, ApiServiceError):
        return exc

    message = str(exc)

    if isinstance(exc, errors.APIError):
        if exc.code == 429:
            return ApiServiceError(ApiErrorType.RATE_LIMIT, "You have exceeded the API rate limit.")
        if exc.code in (401, 403):
            return ApiServiceError(ApiErrorType.INVALID_KEY, "API Key is invalid or not found.")

    if "API key not valid" in message or "Requested entity was not found" in message:
        return ApiServiceError(ApiErrorType.INVALID_KEY, "API Key is invalid or not found.")
    if "Rate limit exceeded" in message:
        return ApiServiceError(ApiErrorType.RATE_LIMIT, "You have exceeded the API rate limit.")

    lowered = message.lower()
    if isinstance(exc, (httpx.TransportError, ConnectionError)) or (
        isinstance(exc, TypeError) and ("fetch" in lowered or "network" in lowered)
    ):
        return ApiServiceError(
            ApiErrorType.NETWORK, "A network error occurred. Please check your connection."
        )

    logger.error("Unknown API error: %s", message, exc_info=exc)
    return ApiServiceError(ApiErrorType.UNKNOWN, "An unknown API error occurred.")


def _require_api_key():
    api_key = config.get_api_key()
    if not api_key:
        raise ApiServiceError(ApiErrorType.INVALID_KEY, "API Key is not configured.")
    return api_key


def _new_client(api_key):
    return genai.Client(
        api_key=api_key,
        http_options=types.HttpOptions(timeout=config.HTTP_TIMEOUT),
    )


async def _generate(api_key, **request):
    """Run one generate_content call on a fresh client, then close its connection pool."""
    client = _new_client(api_key)
    try:
        return await client.aio.models.generate_content(**request)
    finally:
        await client.aio.aclose()


def _finish_reason(response):
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return None
    reason = getattr(candidates[0], "finish_reason", None)
    if reason is None:
        return None
    return str(getattr(reason, "value", reason))


def _checked_text(response, empty_message):
    """Return the stripped response text or raise for a blocked/empty response."""
    reason = _finish_reason(response)
    if reason and reason.upper() != "STOP":
        raise ApiServiceError(
            ApiErrorType.RESPONSE_BLOCKED, f"Response was blocked due to: {reason}"
        )

    text = (getattr(response, "text", None) or "").strip()
    if not text:
        raise ApiServiceError(ApiErrorType.BAD_RESPONSE, empty_message)
    return text


def _parse_json(text, what):
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        logger.error("Failed to parse %s JSON: %s", what, text)
        raise ApiServiceError(
            ApiErrorType.BAD_RESPONSE, f"Received malformed data for {what}."
        ) from None


async def generate_market_analysis(genre):
    api_key = _require_api_key()
    try:
        response = await _generate(
            api_key,
            model=config.ANALYSIS_MODEL,
            contents=MARKET_ANALYSIS_PROMPT.format(genre=genre),
            config=types.GenerateContentConfig(
                response_mime_type="application/json",
                response_schema=MARKET_ANALYSIS_SCHEMA,
            ),
        )
        text = _checked_text(response, "Received an empty response from the AI.")
        analysis = _parse_json(text, "market analysis")
        logger.info("Market analysis ready for %r", genre)
        return analysis
    except ApiServiceError:
        raise
    except Exception as e:
        raise classify_error(e) from e


async def generate_game_levels(genre, analysis):
    api_key = _require_api_key()
    try:
        prompt = LEVEL_DESIGN_PROMPT.format(
            genre=genre,
            trends=", ".join(analysis["trends"]),
            mechanics=", ".join(analysis["mechanics"]),
        )
        response = await _generate(
            api_key,
            model=config.LEVEL_MODEL,
            contents=prompt,
            config=types.GenerateContentConfig(
                response_mime_type="application/json",
                response_schema=GAME_LEVELS_SCHEMA,
            ),
        )
        text = _checked_text(response, "Received an empty response from the AI.")
        levels = _parse_json(text, "game ideas")
        if not isinstance(levels, list) or len(levels) != LEVEL_COUNT:
            logger.error("Expected %d game levels, got: %s", LEVEL_COUNT, text)
            raise ApiServiceError(
                ApiErrorType.BAD_RESPONSE, "Received malformed data for game ideas."
            )
        logger.info("Generated %d levels for %r", len(levels), genre)
        return levels
    except ApiServiceError:
        raise
    except Exception as e:
        raise classify_error(e) from e


def build_prototype_prompt(level):
    compact = {"separators": (",", ":")}
    return (
        PROTOTYPE_PROMPT
        .replace("__TILEMAP__", json.dumps(level["tilemap"], **compact))
        .replace("__PLAYER_START_X__", json.dumps(level["player_start"]["x"]))
        .replace("__PLAYER_START__", json.dumps(level["player_start"], **compact))
        .replace("__GOAL_POSITION__", json.dumps(level["goal_position"], **compact))
    )


def classify_prototype_text(content):
    """Turn the model's stripped reply into a PrototypeResult."""
    if content.startswith(UNFEASIBLE_MARKER):
        return PrototypeResult.text(content[len(UNFEASIBLE_MARKER):].strip())
    return PrototypeResult.html(PROTOTYPE_STYLE + content)


async def generate_prototype(level):
    api_key = _require_api_key()
    try:
        response = await _generate(
            api_key,
            model=config.PROTOTYPE_MODEL,
            contents=build_prototype_prompt(level),
            config=types.GenerateContentConfig(temperature=config.PROTOTYPE_TEMPERATURE),
        )
        content = _checked_text(response, "Received an empty prototype response from the AI.")
        result = classify_prototype_text(content)
        logger.info("Prototype generated (%s, %d chars)", result.type, len(result.content))
        return result
    except ApiServiceError:
        raise
    except Exception as e:
        raise classify_error(e) from e
