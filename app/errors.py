"""Error taxonomy shared by the chat service, the providers and the API layer.

Each error knows the HTTP status it maps to; `app.main` installs the handler
that turns them into JSON responses.
"""


class MarketplaceError(Exception):
    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInput(MarketplaceError):
    status_code = 400


class NotFound(MarketplaceError):
    status_code = 404


class Conflict(MarketplaceError):
    status_code = 409


class ProviderError(MarketplaceError):
    """Gateway failure: network error, timeout, or unusable structured output."""

    status_code = 502


class UnsupportedAction(MarketplaceError):
    status_code = 500


class WebhookVerificationError(MarketplaceError):
    status_code = 400
