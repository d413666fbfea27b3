"""Short-lived Deepgram credentials.

``TokenBroker`` hands the stream client a credential that is never within
five minutes of expiring. In development a static key is configured and
returned as-is; otherwise an issuer is asked for a fresh key. Two issuers
exist: ``EndpointTokenIssuer`` talks to our own ``/api/deepgram-token``
route, ``DeepgramKeyIssuer`` is what that route uses to mint the key.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import requests
import structlog

from errors import AuthError, ProviderError, ValidationError
from interfaces import TokenIssuer
from models import Credential

logger = structlog.get_logger(__name__)

DEFAULT_DURATION_S = 1800
MAX_DURATION_S = 3600
EXPIRY_MARGIN = timedelta(minutes=5)
DEEPGRAM_API_URL = "https://api.deepgram.com/v1"

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def clamp_duration(duration: object = None) -> int:
    """Clamp a requested time-to-live into ``[0, 3600]`` seconds."""
    if duration is None or duration == "":
        return DEFAULT_DURATION_S
    if isinstance(duration, bool):
        raise ValidationError("duration must be a number of seconds")
    try:
        seconds = int(float(duration))  # type: ignore[arg-type]
    except (TypeError, ValueError, OverflowError):
        raise ValidationError("duration must be a number of seconds")
    if seconds == 0:
        return DEFAULT_DURATION_S
    return max(0, min(seconds, MAX_DURATION_S))


def _parse_expiry(value: object) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class TokenBroker:
    def __init__(
        self,
        issuer: Optional[TokenIssuer] = None,
        static_secret: str = "",
        duration: object = None,
        clock: Clock = _utcnow,
    ) -> None:
        self._issuer = issuer
        self._static_secret = static_secret
        self._duration = clamp_duration(duration)
        self._clock = clock
        self._cached: Optional[Credential] = None

    @property
    def cached(self) -> Optional[Credential]:
        return self._cached

    def ensure_valid_credential(self) -> Credential:
        if self._static_secret:
            return Credential(secret=self._static_secret)

        if self._cached is not None and not self.is_expired(self._cached):
            return self._cached

        if self._issuer is None:
            raise AuthError("No Deepgram key or token endpoint configured")

        logger.info("token.refresh", duration=self._duration)
        try:
            credential = self._issuer.issue(self._duration)
        except AuthError:
            raise
        except Exception as exc:
            logger.warning("token.issue_failed", error=str(exc))
            raise AuthError("Failed to get Deepgram authentication token") from exc

        if not credential.secret:
            raise AuthError("Token endpoint returned no key")
        self._cached = credential
        return credential

    def is_expired(self, credential: Credential) -> bool:
        if credential.expires_at is None:
            return True
        return self._clock() >= credential.expires_at - EXPIRY_MARGIN


class EndpointTokenIssuer:
    """Fetch a temporary key from the app's own token route."""

    def __init__(self, url: str, timeout_s: float = 10.0) -> None:
        self._url = url
        self._timeout_s = timeout_s

    def issue(self, duration: int) -> Credential:
        try:
            response = requests.post(
                self._url,
                json={"duration": duration},
                timeout=self._timeout_s,
            )
            data = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise AuthError("Failed to get authentication token from server") from exc

        if not isinstance(data, dict) or not data.get("success") or not data.get("apiKey"):
            error = data.get("error") if isinstance(data, dict) else None
            raise AuthError(error or "Failed to get Deepgram authentication token")

        return Credential(
            secret=str(data["apiKey"]),
            expires_at=_parse_expiry(data.get("expiresAt")),
        )


class DeepgramKeyIssuer:
    """Create a temporary project key through the Deepgram management API."""

    def __init__(
        self,
        api_key: str,
        project_id: str,
        base_url: str = DEEPGRAM_API_URL,
        timeout_s: float = 10.0,
        clock: Clock = _utcnow,
    ) -> None:
        self._api_key = api_key
        self._project_id = project_id
        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s
        self._clock = clock

    def issue(self, duration: int) -> Credential:
        url = f"{self._base_url}/projects/{self._project_id}/keys"
        try:
            response = requests.post(
                url,
                headers={
                    "Authorization": f"Token {self._api_key}",
                    "Content-Type": "application/json",
                },
                json={
                    "comment": "Temporary token for meeting minutes transcription",
                    "scopes": ["usage:write"],
                    "tags": ["temporary", "harmony-minutes", "frontend"],
                    "time_to_live_in_seconds": duration,
                },
                timeout=self._timeout_s,
            )
        except requests.RequestException as exc:
            logger.error("deepgram.key_request_failed", error=str(exc))
            raise ProviderError("Deepgram key request failed") from exc

        if not response.ok:
            logger.error(
                "deepgram.key_rejected",
                status=response.status_code,
                reason=response.reason,
                body=response.text,
            )
            raise ProviderError(f"Deepgram returned {response.status_code}")

        try:
            key = response.json().get("key", "")
        except ValueError as exc:
            raise ProviderError("Deepgram returned malformed key payload") from exc
        if not key:
            raise ProviderError("Deepgram returned no key")

        return Credential(
            secret=str(key),
            expires_at=self._clock() + timedelta(seconds=duration),
        )
