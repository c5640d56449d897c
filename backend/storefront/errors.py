# Overview: Error taxonomy shared by services and routes.

"""
Storefront error taxonomy.

Each error maps to one way a request can be refused:
- ValidationError: malformed or missing input (400), nothing mutated
- AuthenticationError: signature mismatch on a gateway message (400), logged as security event
- NotFoundError: unknown order / reservation / payment (404, or 400 on the callback path)
- GatewayError: remote gateway call failed; carried as data on the Payment, never raised past initiation
- ConsistencyError: expected row missing; repaired in place and logged
- ConflictError: business rule conflict such as an illegal status transition (409)
"""


class StorefrontError(Exception):
    """Base class for storefront domain errors."""
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(StorefrontError, ValueError):
    """400-level input problem."""
    status_code = 400


class AuthenticationError(StorefrontError):
    """Gateway signature did not verify."""
    status_code = 400


class NotFoundError(StorefrontError):
    """Referenced entity does not exist."""
    status_code = 404


class ConflictError(StorefrontError):
    """409-level business rule conflict (e.g., illegal status transition)."""
    status_code = 409


class GatewayError(StorefrontError):
    """Remote payment gateway failed or refused the request."""
    status_code = 502


class ConsistencyError(StorefrontError):
    """A row that should exist was missing and had to be repaired."""
    status_code = 500
