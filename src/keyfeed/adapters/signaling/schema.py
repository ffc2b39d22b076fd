"""Pydantic models describing the signaling service payloads."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr


class SignalingBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class AnnounceRequest(SignalingBaseModel):
    public_key: StrictStr = Field(alias="publicKey", min_length=1)
    manifest_infohash: StrictStr = Field(alias="manifestInfohash", min_length=1)
    seq: StrictInt
    signature: StrictStr = Field(min_length=1)


class AnnounceResponse(SignalingBaseModel):
    success: bool = True
    seq: int


class ErrorResponse(SignalingBaseModel):
    error: str


class ConflictResponse(ErrorResponse):
    current_seq: int | None = Field(default=None, alias="currentSeq")


class LookupResponse(SignalingBaseModel):
    public_key: StrictStr = Field(alias="publicKey")
    manifest_infohash: StrictStr = Field(alias="manifestInfohash")
    seq: StrictInt
    updated_at: int = Field(alias="updatedAt", description="Epoch milliseconds")
    signature: str | None = None


class StatsResponse(SignalingBaseModel):
    entries: int


class HealthResponse(SignalingBaseModel):
    status: str = "ok"
    entries: int
