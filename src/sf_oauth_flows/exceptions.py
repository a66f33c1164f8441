# sf_oauth_flows/exceptions.py
"""Exception hierarchy for OAuth flow errors.

Provider and transport failures are reported as classified ``TokenOutcome``
results. These exceptions cover misuse and missing configuration.
"""


class OAuthFlowError(Exception):
    """Base exception for all flow related errors."""

    pass


class ConfigurationError(OAuthFlowError):
    """Raised when required configuration for a flow is missing."""

    pass


class AssertionBuildError(OAuthFlowError):
    """Raised when a JWT or SAML assertion cannot be built."""

    pass


class MissingRefreshTokenError(OAuthFlowError):
    """Raised when the refresh flow is started without a stored refresh token."""

    pass


class UnsupportedStepError(OAuthFlowError):
    """Raised when a flow variant is asked for a step it does not have."""

    pass


class NoActiveFlowError(OAuthFlowError):
    """Raised when a session operation needs a flow but none was started."""

    pass


class InvalidTransitionError(OAuthFlowError):
    """Raised when the device poller is driven into a disallowed state."""

    pass
