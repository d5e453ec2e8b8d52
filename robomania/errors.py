"""Error taxonomy for registration and payment flows. Rendered by the API as {"detail": message}."""
from __future__ import annotations

from typing import Optional


class RoboManiaError(Exception):
    """Base class. ``status_code`` is the HTTP status the API answers with."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(RoboManiaError):
    """Missing fields, invalid weight or amount. Raised before anything is written."""

    status_code = 400


class InvalidAmount(ValidationError):
    pass


class NotFound(RoboManiaError):
    status_code = 404


class AlreadyRegistered(RoboManiaError):
    """A paid RoboWars entry was resubmitted with the same bot."""

    status_code = 409


class GatewayError(RoboManiaError):
    """Payment provider transport or API failure. Carries the provider's raw message."""

    status_code = 500

    def __init__(self, provider: str, message: str, provider_status: Optional[int] = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.provider_message = message
        self.provider_status = provider_status


class SignatureMismatch(RoboManiaError):
    """Payment signature did not verify. A failed-payment outcome, not a server error."""

    status_code = 400


class CallbackAuthError(RoboManiaError):
    """Gateway callback could not be authenticated."""

    status_code = 401
