"""Salesforce OAuth flows - a client side orchestrator for OAuth 2.0 grants.

This library builds, executes and validates the requests of every OAuth 2.0
flow a Salesforce connected app supports:
- User agent (implicit) and web server (authorization code, with PKCE)
- JWT bearer and SAML bearer assertions
- Username-password
- Device authorization, with a polling state machine
- Refresh token and pre-signed SAML assertion exchange
"""

from .device_poller import DevicePoller, poll_until_complete
from .exceptions import (
    AssertionBuildError,
    ConfigurationError,
    InvalidTransitionError,
    MissingRefreshTokenError,
    NoActiveFlowError,
    OAuthFlowError,
    UnsupportedStepError,
)
from .flows import AuthFlow, create_flow
from .models import (
    CallbackResult,
    DeviceAuthorization,
    DevicePollState,
    DevicePollStatus,
    FlowContext,
    FlowVariant,
    OutboundRequest,
    OutcomeKind,
    PollTick,
    RedirectInstruction,
    TokenBundle,
    TokenOutcome,
    TokenResult,
    WebServerMode,
)
from .oauth_config import OAuthConfig
from .oauth_handler import OAuthHandler
from .session import OAuthSession
from .token_manager import TokenManager
from .token_validator import TokenResponseValidator
from .transport import HttpExecutor, TransportResponse

__version__ = "0.1.0"

__all__ = [
    "AssertionBuildError",
    "AuthFlow",
    "CallbackResult",
    "ConfigurationError",
    "DeviceAuthorization",
    "DevicePollState",
    "DevicePollStatus",
    "DevicePoller",
    "FlowContext",
    "FlowVariant",
    "HttpExecutor",
    "InvalidTransitionError",
    "MissingRefreshTokenError",
    "NoActiveFlowError",
    "OAuthConfig",
    "OAuthFlowError",
    "OAuthHandler",
    "OAuthSession",
    "OutboundRequest",
    "OutcomeKind",
    "PollTick",
    "RedirectInstruction",
    "TokenBundle",
    "TokenManager",
    "TokenOutcome",
    "TokenResponseValidator",
    "TokenResult",
    "TransportResponse",
    "UnsupportedStepError",
    "WebServerMode",
    "create_flow",
    "poll_until_complete",
]
