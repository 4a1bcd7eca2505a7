"""Domain exceptions.

Caller faults (`BadRequestError`, `NotFoundError`) are surfaced verbatim to the
client. `InternalServerError` messages are logged but the HTTP layer hides
their detail.
"""

from __future__ import annotations


class BadRequestError(ValueError):
    status_code = 400


class NotFoundError(KeyError):
    status_code = 404

    def __str__(self) -> str:
        # KeyError quotes its argument; keep messages readable
        return str(self.args[0]) if self.args else ""


class InternalServerError(RuntimeError):
    status_code = 500


class ConversionError(ValueError):
    """A model's editor JSON could not be turned into its native form."""


class InvalidContentStateError(RuntimeError):
    """Editor content was moved through an illegal state transition."""
