"""Domain exceptions.

Raised by the database and service layers when a business rule is violated.
The API layer translates them into JSON error responses; the attached
`status_code` is the HTTP status used for that translation.
"""

from __future__ import annotations


class StoreError(Exception):
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(StoreError):
    """Input is well-formed JSON but violates a business rule."""

    status_code = 400


class AuthenticationError(StoreError):
    status_code = 401


class PermissionDeniedError(StoreError):
    status_code = 403


class NotFoundError(StoreError):
    status_code = 404


class ConflictError(StoreError):
    status_code = 409


class InvalidTransitionError(ConflictError):
    """An order status change that the lifecycle does not allow."""


class SoldOutError(ConflictError):
    """One or more cart lines asked for more than the available stock."""

    def __init__(self, sold_out_items: list[str], sold_out_product_ids: list[str]) -> None:
        super().__init__("Items sold out")
        self.sold_out_items = sold_out_items
        self.sold_out_product_ids = sold_out_product_ids

    def to_response(self) -> dict:
        return {
            "error": self.message,
            "soldOutItems": self.sold_out_items,
            "soldOutProductIds": self.sold_out_product_ids,
        }
