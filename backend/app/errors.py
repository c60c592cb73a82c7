"""Domain exceptions raised by the donation and campaign services.

Route handlers never translate these by hand; ``app.main`` registers one
exception handler per class that maps it to an HTTP status.
"""
from __future__ import annotations

import uuid
from decimal import Decimal


class DonationServiceError(Exception):
    """Base class for every error raised by the service layer."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message}


class ValidationError(DonationServiceError):
    """A required field is missing or a field value breaks a record rule."""

    status_code = 400

    def __init__(
        self,
        message: str,
        field: str | None = None,
        fields: dict[str, bool] | None = None,
    ):
        super().__init__(message)
        self.field = field
        self.fields = fields

    def to_dict(self) -> dict:
        body = {"detail": self.message}
        if self.field:
            body["field"] = self.field
        if self.fields:
            body["fields"] = self.fields
        return body


class NotFoundError(DonationServiceError):
    """A donation, campaign, attachment or user id does not resolve."""

    status_code = 404

    def __init__(self, resource: str, resource_id: uuid.UUID | str | None = None):
        super().__init__(f"{resource} not found")
        self.resource = resource
        self.resource_id = resource_id


class AuthorizationError(DonationServiceError):
    """The actor may not mutate the target record."""

    status_code = 403


class ReconciliationError(DonationServiceError):
    """A campaign amount adjustment could not be applied.

    The surrounding transaction is rolled back, so the donation write that
    triggered the adjustment is not committed either.
    """

    status_code = 500

    def __init__(self, campaign_id: uuid.UUID, delta: Decimal, reason: str):
        super().__init__(
            f"Could not adjust funding of campaign {campaign_id} by {delta}: {reason}"
        )
        self.campaign_id = campaign_id
        self.delta = delta
        self.reason = reason

    def to_dict(self) -> dict:
        return {"detail": "Campaign funding could not be updated; the change was not saved"}
