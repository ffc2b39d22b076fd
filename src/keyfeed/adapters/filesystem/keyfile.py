"""Publisher identity persisted as ``keys.json``."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, StrictStr
from pydantic import ValidationError as PydanticValidationError

from keyfeed.config.errors import ConfigurationError, MissingConfigurationError
from keyfeed.domain.errors import ValidationError
from keyfeed.domain.model import Identity

from .files import write_atomic

if TYPE_CHECKING:
    from pathlib import Path

log = getLogger(__name__)


class KeyFileExistsError(ConfigurationError):
    """Raised when generating keys would overwrite an existing key file."""


class KeyFilePayload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    public_key: StrictStr = Field(alias="publicKey")
    private_key: StrictStr = Field(alias="privateKey")
    created_at: str | None = Field(default=None, alias="createdAt")


class KeyFile:
    def __init__(self, path: Path) -> None:
        self.path = path

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> Identity:
        if not self.exists():
            raise MissingConfigurationError(
                f"No key file at {self.path}. Run `keyfeed keygen` first."
            )
        try:
            payload = KeyFilePayload.model_validate(json.loads(self.path.read_text("utf-8")))
        except (UnicodeDecodeError, json.JSONDecodeError, PydanticValidationError) as exc:
            raise ValidationError(f"Key file {self.path} is malformed") from exc
        return Identity.from_seed_hex(payload.private_key, public_key=payload.public_key)

    def public_key(self) -> str:
        return self.load().public_key

    def create(self, identity: Identity | None = None, *, force: bool = False) -> Identity:
        """Write a new key file, refusing to replace an existing one unless ``force``."""

        if self.exists() and not force:
            raise KeyFileExistsError(
                f"Keys already exist at {self.path}. "
                "Delete the file or pass --force to replace them."
            )
        identity = identity or Identity.generate()
        payload = KeyFilePayload(
            public_key=identity.public_key,
            private_key=identity.seed_hex,
            created_at=datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        )
        data = json.dumps(payload.model_dump(by_alias=True), indent=2).encode("utf-8")
        write_atomic(self.path, data, mode=0o600)
        log.info("Wrote key file %s", self.path)
        return identity
