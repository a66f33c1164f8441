# sf_oauth_flows/models.py
"""Data records shared by the flows, the validator and the device poller."""

from enum import Enum
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit

from pydantic import BaseModel, Field

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


class FlowVariant(str, Enum):
    """Grant types the orchestrator can run."""

    USER_AGENT = "user_agent"
    WEB_SERVER = "web_server"
    JWT_BEARER = "jwt_bearer"
    SAML_BEARER = "saml_bearer"
    USERNAME_PASSWORD = "username_password"
    DEVICE = "device"
    REFRESH_TOKEN = "refresh_token"
    SAML_ASSERTION = "saml_assertion"


class WebServerMode(str, Enum):
    """How the web server flow proves the client at the token endpoint."""

    SECRET = "secret"
    PKCE = "pkce"
    PKCE_SECRET = "pkce_secret"

    @property
    def uses_pkce(self) -> bool:
        return self in (WebServerMode.PKCE, WebServerMode.PKCE_SECRET)

    @property
    def uses_secret(self) -> bool:
        return self in (WebServerMode.SECRET, WebServerMode.PKCE_SECRET)


class OutboundRequest(BaseModel):
    """A request a flow wants executed against the provider."""

    method: str = "GET"
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[str] = None

    @classmethod
    def get(cls, url: str, params: Mapping[str, str]) -> "OutboundRequest":
        return cls(method="GET", url=f"{url}?{urlencode(dict(params))}")

    @classmethod
    def form_post(cls, url: str, params: Mapping[str, str]) -> "OutboundRequest":
        return cls(
            method="POST",
            url=url,
            headers={"Content-Type": FORM_CONTENT_TYPE},
            body=urlencode(dict(params)),
        )

    def form(self) -> Dict[str, str]:
        """Decode the form body (POST) or query string (GET) into a dict."""
        raw = self.body if self.method == "POST" else urlsplit(self.url).query
        return dict(parse_qsl(raw or "", keep_blank_values=True))


class FlowContext(BaseModel):
    """State of the single active flow of a session."""

    variant: FlowVariant
    is_sandbox: bool = False
    state: Optional[str] = None
    code_verifier: Optional[str] = None
    code_challenge: Optional[str] = None
    device_code: Optional[str] = None
    poll_interval: Optional[int] = None


class TokenResult(BaseModel):
    """Normalized token endpoint response."""

    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    instance_url: Optional[str] = None
    identity_url: Optional[str] = None
    issued_at: Optional[str] = None
    signature: Optional[str] = None
    id_token: Optional[str] = None
    api_version: Optional[str] = None
    token_type: str = "Bearer"
    scope: Optional[str] = None

    def get_authorization_header(self) -> str:
        return f"{self.token_type} {self.access_token}"


class TokenBundle(BaseModel):
    """What the presentation layer hands back to the browser after a login."""

    access_token: str
    api_version: Optional[str] = None
    instance_url: Optional[str] = None
    identity_url: Optional[str] = None

    def as_cookies(self) -> List[str]:
        return [
            f"AccToken={self.access_token}",
            f"APIVer={self.api_version}",
            f"InstURL={self.instance_url}",
            f"idURL={self.identity_url}",
        ]


class RedirectInstruction(BaseModel):
    location: str
    bundle: Optional[TokenBundle] = None


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    TRANSPORT_FAILURE = "transport_failure"
    PARSE_FAILURE = "parse_failure"
    IDENTITY_VERIFICATION_FAILURE = "identity_verification_failure"
    PROVIDER_REJECTION = "provider_rejection"
    STATE_MISMATCH = "state_mismatch"
    DEVICE_FLOW_TERMINAL_FAILURE = "device_flow_terminal_failure"


class TokenOutcome(BaseModel):
    """Classified result of a token exchange or callback."""

    kind: OutcomeKind
    token_result: Optional[TokenResult] = None
    redirect: Optional[RedirectInstruction] = None
    error: Optional[str] = None
    error_description: Optional[str] = None
    raw_body: Optional[str] = None
    id_token_header: Optional[Dict[str, Any]] = None
    id_token_claims: Optional[Dict[str, Any]] = None

    @property
    def is_success(self) -> bool:
        return self.kind == OutcomeKind.SUCCESS


class CallbackResult(BaseModel):
    """Parameters returned to the callback URL, with the state comparison."""

    code: Optional[str] = None
    returned_state: Optional[str] = None
    expected_state: Optional[str] = None
    params: Dict[str, str] = Field(default_factory=dict)

    @property
    def state_matches(self) -> bool:
        return (
            self.expected_state is not None
            and self.returned_state == self.expected_state
        )


class DeviceAuthorization(BaseModel):
    """Values to show the user while the device flow is pending."""

    verification_uri: str
    user_code: str
    device_code: str
    interval: int = 5
    is_sandbox: bool = False


class DevicePollStatus(str, Enum):
    PENDING = "pending"
    SLOW_DOWN = "slow_down"
    AUTHORIZED = "authorized"
    DENIED = "denied"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self not in (DevicePollStatus.PENDING, DevicePollStatus.SLOW_DOWN)


class DevicePollState(BaseModel):
    device_code: str
    interval: int
    verification_uri: Optional[str] = None
    user_code: Optional[str] = None
    status: DevicePollStatus = DevicePollStatus.PENDING
    attempts: int = 0


class PollTick(BaseModel):
    """Result of one device poll: either terminal, or wait ``retry_after``."""

    status: DevicePollStatus
    retry_after: Optional[int] = None
    outcome: Optional[TokenOutcome] = None

    @property
    def done(self) -> bool:
        return self.status.is_terminal
