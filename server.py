"""HTTP endpoints for the recorder: temporary Deepgram keys and minutes formatting.

Both routes are POST-only and rate limited per caller, each with its own
limiter. Upstream error bodies are logged, never returned to the client.
"""

from __future__ import annotations

import asyncio
import json
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import ServerSettings
from errors import ConfigError, ProviderError, ValidationError
from interfaces import TextGenerator, TokenIssuer
from minutes_formatter import MAX_TRANSCRIPT_LENGTH, DashscopeTextGenerator, MinutesFormatter
from models import MeetingMetadata
from rate_limit import FixedWindowRateLimiter, client_identity
from sanitizer import sanitize_minutes
from token_broker import DeepgramKeyIssuer, clamp_duration

logger = structlog.get_logger(__name__)

TOKEN_REQUESTS_PER_HOUR = 50
MINUTES_REQUESTS_PER_HOUR = 20
HOUR_S = 60 * 60


def _error(status: int, message: str, headers: Optional[dict] = None) -> JSONResponse:
    return JSONResponse({"success": False, "error": message}, status_code=status, headers=headers)


def _rate_limited() -> JSONResponse:
    return _error(
        429,
        "Too many requests. Please try again later.",
        headers={"X-RateLimit-Remaining": "0"},
    )


async def _read_json(request: Request) -> dict:
    """Parse the request body; an empty body counts as ``{}``."""
    raw = await request.body()
    if not raw.strip():
        return {}
    body = json.loads(raw)
    if not isinstance(body, dict):
        raise ValueError("request body must be a JSON object")
    return body


def create_app(
    settings: Optional[ServerSettings] = None,
    key_issuer: Optional[TokenIssuer] = None,
    generator: Optional[TextGenerator] = None,
    token_limiter: Optional[FixedWindowRateLimiter] = None,
    minutes_limiter: Optional[FixedWindowRateLimiter] = None,
) -> FastAPI:
    settings = settings or ServerSettings.from_env()
    app = FastAPI(title="Harmony Minutes")
    app.state.settings = settings
    app.state.key_issuer = key_issuer
    app.state.generator = generator
    app.state.token_limiter = token_limiter or FixedWindowRateLimiter(
        limit=TOKEN_REQUESTS_PER_HOUR, window_s=HOUR_S
    )
    app.state.minutes_limiter = minutes_limiter or FixedWindowRateLimiter(
        limit=MINUTES_REQUESTS_PER_HOUR, window_s=HOUR_S
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == 405:
            return _error(405, "Method not allowed")
        return _error(exc.status_code, str(exc.detail))

    @app.api_route("/api/deepgram-token", methods=["POST"])
    async def deepgram_token(request: Request) -> JSONResponse:
        limit = app.state.token_limiter.check(client_identity(request.headers))
        if not limit.allowed:
            return _rate_limited()

        try:
            if not settings.has_deepgram and app.state.key_issuer is None:
                logger.error("token.missing_config")
                return _error(500, "Service configuration error")

            try:
                body = await _read_json(request)
            except ValueError:
                return _error(400, "Invalid JSON in request body")
            try:
                duration = clamp_duration(body.get("duration"))
            except ValidationError as exc:
                return _error(400, exc.message)

            issuer = app.state.key_issuer or DeepgramKeyIssuer(
                settings.deepgram_api_key, settings.deepgram_project_id
            )
            try:
                credential = await asyncio.to_thread(issuer.issue, duration)
            except ProviderError:
                return _error(503, "Failed to generate transcription token")

            logger.info("token.issued", duration=duration)
            return JSONResponse(
                {
                    "success": True,
                    "apiKey": credential.secret,
                    "expiresAt": credential.expires_at.isoformat() if credential.expires_at else None,
                },
                headers={"X-RateLimit-Remaining": str(limit.remaining)},
            )
        except Exception:
            logger.exception("token.unexpected_error")
            return _error(500, "Internal server error")

    @app.api_route("/api/format-minutes", methods=["POST"])
    async def format_minutes(request: Request) -> JSONResponse:
        limit = app.state.minutes_limiter.check(client_identity(request.headers))
        if not limit.allowed:
            return _rate_limited()

        try:
            if not settings.dashscope_api_key and app.state.generator is None:
                logger.error("minutes.missing_config")
                return _error(500, "Service configuration error")

            try:
                body = await _read_json(request)
            except ValueError:
                return _error(400, "Invalid JSON in request body")

            transcript = body.get("transcript")
            if not isinstance(transcript, str) or not transcript.strip():
                return _error(400, "Transcript is required and cannot be empty")
            if len(transcript) > MAX_TRANSCRIPT_LENGTH:
                return _error(400, "Transcript too long. Maximum 50,000 characters.")

            info = body.get("meetingInfo")
            meta = MeetingMetadata.from_dict(info if isinstance(info, dict) else {})
            generator = app.state.generator or DashscopeTextGenerator(
                settings.dashscope_api_key, model=settings.dashscope_model
            )
            formatter = MinutesFormatter(generator)
            try:
                minutes = await asyncio.to_thread(
                    formatter.format, transcript, meta, require_officers=False
                )
            except ValidationError as exc:
                return _error(500, exc.message)
            except ProviderError:
                return _error(503, "Formatting service unavailable")
            except ConfigError:
                return _error(500, "Service configuration error")

            return JSONResponse(
                {"success": True, "formattedMinutes": sanitize_minutes(minutes).to_dict()},
                headers={"X-RateLimit-Remaining": str(limit.remaining)},
            )
        except Exception:
            logger.exception("minutes.unexpected_error")
            return _error(500, "Internal server error")

    return app
