"""Exception hierarchy for the concierge relay."""


class RelayError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(RelayError):
    """Required configuration is missing or invalid at startup."""


class UpstreamUnavailableError(RelayError):
    """The speech-model socket could not be established."""


class FrameParseError(RelayError, ValueError):
    """A websocket frame was not valid JSON or did not match its schema."""


class CallNotFoundError(RelayError, LookupError):
    """No call session is recorded under the given id."""

    def __init__(self, call_id: str):
        super().__init__(f"Call not found: {call_id}")
        self.call_id = call_id


class DuplicateCallError(RelayError):
    """A call id was recorded twice."""

    def __init__(self, call_id: str):
        super().__init__(f"Call already recorded: {call_id}")
        self.call_id = call_id


class HubNotInitializedError(RelayError, RuntimeError):
    """The notification hub was used before start()."""


class AuthenticationError(RelayError):
    """A bearer token was missing, expired or failed verification."""


class CarrierNotConfiguredError(RelayError):
    """A carrier REST call was attempted without credentials."""
