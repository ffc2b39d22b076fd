"""Error taxonomy shared by the core services and their adapters."""

from __future__ import annotations


class KeyfeedError(Exception):
    """Base class for every error raised by keyfeed."""


class ValidationError(KeyfeedError, ValueError):
    """Malformed identity, signature, pointer or manifest shape."""


class VerificationFailure(KeyfeedError):
    """A signature did not verify; the data is untrusted."""


class SigningError(KeyfeedError):
    """The local identity could not produce a signature."""


class UnavailableError(KeyfeedError):
    """A collaborator timed out or could not be reached."""


class NoPeersError(UnavailableError):
    """The record store has no usable peers to serve the request."""


class SequenceConflict(KeyfeedError):
    """A write carried a sequence number that is not strictly increasing."""

    def __init__(self, message: str, *, current_seq: int | None = None) -> None:
        super().__init__(message)
        self.current_seq = current_seq


__all__ = [
    "KeyfeedError",
    "NoPeersError",
    "SequenceConflict",
    "SigningError",
    "UnavailableError",
    "ValidationError",
    "VerificationFailure",
]
