class RemovalError(Exception):
    """Base class for failures surfaced by the removal endpoint."""

    kind = "removal-error"

    def __init__(self, message: str, details: str | None = None) -> None:
        super().__init__(message)
        self.details = details


class InvalidRequest(RemovalError):
    kind = "missing-image"


class ProviderUnavailable(RemovalError):
    kind = "no-provider-configured"


class ProviderError(RemovalError):
    kind = "provider-error"

    def __init__(
        self,
        message: str,
        provider: str,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message, details=body)
        self.provider = provider
        self.status_code = status_code
        self.body = body


class NoImageInResponse(ProviderError):
    def __init__(self, provider: str) -> None:
        super().__init__(f"No image data in {provider} response", provider=provider)


class DecodeFailed(RemovalError):
    kind = "decode-error"


class ConfigurationError(Exception):
    pass
