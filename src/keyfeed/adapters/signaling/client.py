"""HTTP client for the signaling service."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING

import httpx
from pydantic import ValidationError as PydanticValidationError

from keyfeed.adapters.http_resilience import ResilientClient
from keyfeed.config.signaling import SignalingConfig, get_signaling_config
from keyfeed.domain.errors import (
    SequenceConflict,
    UnavailableError,
    ValidationError,
    VerificationFailure,
)
from keyfeed.domain.model import Announcement
from keyfeed.domain.ports import SignalingService

from .schema import (
    AnnounceRequest,
    AnnounceResponse,
    ConflictResponse,
    ErrorResponse,
    LookupResponse,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from keyfeed.config.http_resilience import ResilienceConfig
    from keyfeed.domain.model import OwnerKey

log = getLogger(__name__)


def _default_client_factory(config: ResilienceConfig) -> ResilientClient:
    return ResilientClient(config)


def _error_message(response: httpx.Response) -> str:
    try:
        return ErrorResponse.model_validate(response.json()).error
    except (ValueError, PydanticValidationError):
        return response.text or response.reason_phrase


@dataclass(slots=True)
class HttpSignalingService:
    """Announce and look up manifest pointers on a signaling server.

    The underlying client is created lazily and kept open until :meth:`aclose`.
    """

    config: SignalingConfig = field(default_factory=get_signaling_config)
    client_factory: Callable[[ResilienceConfig], ResilientClient] = field(
        default=_default_client_factory
    )
    _client: ResilientClient | None = field(default=None, init=False, repr=False)

    @property
    def client(self) -> ResilientClient:
        if self._client is None:
            self._client = self.client_factory(self.config.resilience)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def announce(self, announcement: Announcement) -> int:
        if announcement.signature is None:
            raise ValidationError("Refusing to announce an unsigned pointer")
        payload = AnnounceRequest(
            public_key=announcement.owner_key,
            manifest_infohash=announcement.pointer,
            seq=announcement.seq,
            signature=announcement.signature,
        )
        try:
            response = await self.client.post(
                "/announce", json=payload.model_dump(by_alias=True)
            )
        except httpx.HTTPError as exc:
            raise UnavailableError(f"Signaling service unreachable: {exc}") from exc

        if response.status_code == httpx.codes.CONFLICT:
            try:
                conflict = ConflictResponse.model_validate(response.json())
            except (ValueError, PydanticValidationError):
                conflict = ConflictResponse(error=response.text or "conflict")
            raise SequenceConflict(
                f"Signaling service rejected seq {announcement.seq}: {conflict.error}",
                current_seq=conflict.current_seq,
            )
        self._raise_for_status(response)
        try:
            accepted = AnnounceResponse.model_validate(response.json())
        except (ValueError, PydanticValidationError) as exc:
            raise UnavailableError("Unexpected announce response from signaling service") from exc
        log.debug("Announced %s... seq %d", announcement.owner_key[:16], accepted.seq)
        return accepted.seq

    async def lookup(self, owner_key: OwnerKey, *, timeout: float) -> Announcement | None:
        try:
            response = await self.client.get(f"/lookup/{owner_key}", timeout=timeout)
        except httpx.HTTPError as exc:
            raise UnavailableError(f"Signaling service unreachable: {exc}") from exc

        if response.status_code == httpx.codes.NOT_FOUND:
            return None
        self._raise_for_status(response)
        try:
            payload = LookupResponse.model_validate(response.json())
        except (ValueError, PydanticValidationError) as exc:
            raise ValidationError("Malformed lookup response from signaling service") from exc
        return Announcement(
            owner_key=payload.public_key,
            pointer=payload.manifest_infohash,
            seq=payload.seq,
            signature=payload.signature,
            updated_at=datetime.fromtimestamp(payload.updated_at / 1000, UTC),
        )

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.is_success:
            return
        message = _error_message(response)
        if response.status_code == httpx.codes.BAD_REQUEST:
            raise ValidationError(f"Signaling service rejected the request: {message}")
        if response.status_code == httpx.codes.FORBIDDEN:
            raise VerificationFailure(f"Signaling service rejected the signature: {message}")
        raise UnavailableError(
            f"Signaling service answered {response.status_code}: {message}"
        )


if TYPE_CHECKING:
    _service_check: SignalingService = HttpSignalingService()
