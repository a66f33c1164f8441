# sf_oauth_flows/flows.py
"""One class per OAuth grant type, all behind the AuthFlow contract.

A flow only builds requests and interprets callbacks. Executing the requests
and validating token responses is left to the session.
"""

import base64
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, ClassVar, Dict, Mapping, Optional, Type, Union

from .crypto import (
    build_jwt_assertion,
    build_saml_bearer_assertion,
    generate_code_challenge,
    generate_code_verifier,
    generate_state,
)
from .exceptions import (
    AssertionBuildError,
    ConfigurationError,
    MissingRefreshTokenError,
    UnsupportedStepError,
)
from .models import (
    CallbackResult,
    DeviceAuthorization,
    FlowContext,
    FlowVariant,
    OutboundRequest,
    WebServerMode,
)
from .oauth_config import OAuthConfig

logger = logging.getLogger(__name__)

JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
SAML2_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:saml2-bearer"
SAML_SSO_ASSERTION_TYPE = "urn:oasis:names:tc:SAML:2.0:profiles:SSO:browser"
DEFAULT_DEVICE_INTERVAL = 5

CallbackValue = Union[CallbackResult, DeviceAuthorization, None]


def _read_text(path: Optional[Path], what: str) -> str:
    if path is None:
        raise ConfigurationError(f"No {what} configured")
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise AssertionBuildError(f"Could not read {what} from {path}: {e}") from e


def _poll_interval(value: Any) -> int:
    if value is None or value == "":
        return DEFAULT_DEVICE_INTERVAL
    try:
        interval = int(value)
    except (TypeError, ValueError):
        logger.warning(
            f"Unusable device poll interval {value!r}, "
            f"using {DEFAULT_DEVICE_INTERVAL}s"
        )
        return DEFAULT_DEVICE_INTERVAL
    return interval if interval > 0 else DEFAULT_DEVICE_INTERVAL


class AuthFlow(ABC):
    """Common contract of every grant type."""

    variant: ClassVar[FlowVariant]
    has_authorization_step: ClassVar[bool] = False

    def __init__(self, config: OAuthConfig, is_sandbox: bool = False):
        self.config = config
        self.context = FlowContext(variant=self.variant, is_sandbox=is_sandbox)

    @property
    def is_sandbox(self) -> bool:
        return self.context.is_sandbox

    @property
    def token_endpoint(self) -> str:
        return self.config.get_token_endpoint(self.is_sandbox)

    @property
    def authorize_endpoint(self) -> str:
        return self.config.get_authorize_endpoint(self.is_sandbox)

    def build_authorization_request(self) -> OutboundRequest:
        raise UnsupportedStepError(
            f"{self.variant.value} flow has no authorization step"
        )

    @abstractmethod
    def build_token_request(self, **kwargs: Any) -> OutboundRequest:
        """Build the POST to the token endpoint."""

    def consume_callback(self, params: Mapping[str, Any]) -> CallbackValue:
        raise UnsupportedStepError(f"{self.variant.value} flow has no callback")

    def _new_state(self) -> str:
        self.context.state = generate_state()
        return self.context.state

    def _check_state(self, params: Mapping[str, Any]) -> CallbackResult:
        result = CallbackResult(
            code=params.get("code"),
            returned_state=params.get("state"),
            expected_state=self.context.state,
            params={k: str(v) for k, v in params.items()},
        )
        if not result.state_matches:
            logger.warning(f"State mismatch on {self.variant.value} callback")
        return result

    def _require_callback_url(self) -> str:
        if not self.config.callback_url:
            raise ConfigurationError(f"{self.variant.value} flow needs a callback_url")
        return self.config.callback_url

    def _require_username(self) -> str:
        if not self.config.username:
            raise ConfigurationError(f"{self.variant.value} flow needs a username")
        return self.config.username

    def _client_params(self, include_secret: bool = True) -> Dict[str, str]:
        params = {"client_id": self.config.client_id}
        if include_secret and self.config.client_secret:
            params["client_secret"] = self.config.client_secret
        return params


class UserAgentFlow(AuthFlow):
    """Implicit grant: the provider returns the token in the redirect fragment."""

    variant = FlowVariant.USER_AGENT
    has_authorization_step = True

    def build_authorization_request(self) -> OutboundRequest:
        params = {
            "response_type": "token",
            "client_id": self.config.client_id,
            "redirect_uri": self._require_callback_url(),
            "state": self._new_state(),
        }
        return OutboundRequest.get(self.authorize_endpoint, params)

    def build_token_request(self, **kwargs: Any) -> OutboundRequest:
        raise UnsupportedStepError(
            "user_agent flow receives its token in the redirect fragment"
        )

    def consume_callback(self, params: Mapping[str, Any]) -> CallbackResult:
        return self._check_state(params)


class WebServerFlow(AuthFlow):
    """Authorization code grant, with PKCE and/or client secret."""

    variant = FlowVariant.WEB_SERVER
    has_authorization_step = True

    def __init__(
        self,
        config: OAuthConfig,
        is_sandbox: bool = False,
        mode: WebServerMode = WebServerMode.PKCE_SECRET,
    ):
        super().__init__(config, is_sandbox)
        self.mode = WebServerMode(mode)
        if self.mode.uses_pkce:
            self.context.code_verifier = generate_code_verifier()
            self.context.code_challenge = generate_code_challenge(
                self.context.code_verifier
            )

    def build_authorization_request(self) -> OutboundRequest:
        params = {
            "response_type": "code",
            "client_id": self.config.client_id,
            "redirect_uri": self._require_callback_url(),
            "state": self._new_state(),
        }
        if self.context.code_challenge:
            params["code_challenge"] = self.context.code_challenge
            params["code_challenge_method"] = "S256"
        scope = self.config.get_scope()
        if scope:
            params["scope"] = scope
        return OutboundRequest.get(self.authorize_endpoint, params)

    def consume_callback(self, params: Mapping[str, Any]) -> CallbackResult:
        return self._check_state(params)

    def build_token_request(self, code: str = "", **kwargs: Any) -> OutboundRequest:
        if not code:
            raise ConfigurationError("web_server token request needs a code")
        params = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self._require_callback_url(),
        }
        params.update(self._client_params(include_secret=self.mode.uses_secret))
        if self.mode.uses_pkce and self.context.code_verifier:
            params["code_verifier"] = self.context.code_verifier
        return OutboundRequest.form_post(self.token_endpoint, params)


class JwtBearerFlow(AuthFlow):
    variant = FlowVariant.JWT_BEARER

    def build_token_request(self, **kwargs: Any) -> OutboundRequest:
        private_key = _read_text(self.config.private_key_path, "private key")
        assertion = build_jwt_assertion(
            client_id=self.config.client_id,
            subject=self._require_username(),
            audience=self.config.get_base_url(self.is_sandbox),
            private_key=private_key,
            lifetime=self.config.jwt_lifetime,
        )
        params = {"grant_type": JWT_BEARER_GRANT, "assertion": assertion}
        return OutboundRequest.form_post(self.token_endpoint, params)


class SamlBearerFlow(AuthFlow):
    variant = FlowVariant.SAML_BEARER

    def build_token_request(self, **kwargs: Any) -> OutboundRequest:
        private_key = _read_text(self.config.private_key_path, "private key")
        certificate = _read_text(self.config.certificate_path, "certificate")
        assertion = build_saml_bearer_assertion(
            issuer=self.config.saml_issuer or self.config.client_id,
            subject=self._require_username(),
            audience=self.config.saml_audience
            or self.config.get_base_url(self.is_sandbox),
            recipient=self.token_endpoint,
            private_key=private_key,
            certificate=certificate,
            lifetime=self.config.jwt_lifetime,
        )
        params = {"grant_type": SAML2_BEARER_GRANT, "assertion": assertion}
        return OutboundRequest.form_post(self.token_endpoint, params)


class UsernamePasswordFlow(AuthFlow):
    """Resource owner password grant. Credentials are used once, never kept."""

    variant = FlowVariant.USERNAME_PASSWORD

    def build_token_request(
        self, username: str = "", password: str = "", **kwargs: Any
    ) -> OutboundRequest:
        if not username or not password:
            raise ConfigurationError("username_password flow needs credentials")
        params = {"grant_type": "password"}
        params.update(self._client_params())
        params["username"] = username
        params["password"] = password
        return OutboundRequest.form_post(self.token_endpoint, params)


class DeviceFlow(AuthFlow):
    """Device authorization grant. Polling is driven by DevicePoller."""

    variant = FlowVariant.DEVICE
    has_authorization_step = True

    def build_authorization_request(self) -> OutboundRequest:
        params = {"response_type": "device_code", "client_id": self.config.client_id}
        scope = self.config.get_scope()
        if scope:
            params["scope"] = scope
        return OutboundRequest.form_post(self.token_endpoint, params)

    def consume_callback(
        self, params: Mapping[str, Any]
    ) -> Optional[DeviceAuthorization]:
        """
        Read the device authorization response.

        Returns:
            DeviceAuthorization to display, or None if the response has no
            verification URI (an error response)
        """
        if not params.get("verification_uri") or not params.get("device_code"):
            return None
        interval = _poll_interval(params.get("interval"))
        self.context.device_code = str(params["device_code"])
        self.context.poll_interval = interval
        return DeviceAuthorization(
            verification_uri=str(params["verification_uri"]),
            user_code=str(params.get("user_code") or ""),
            device_code=self.context.device_code,
            interval=interval,
            is_sandbox=self.is_sandbox,
        )

    def build_token_request(self, **kwargs: Any) -> OutboundRequest:
        if not self.context.device_code:
            raise UnsupportedStepError("Device authorization has not completed yet")
        params = {
            "grant_type": "device_code",
            "client_id": self.config.client_id,
            "code": self.context.device_code,
        }
        return OutboundRequest.form_post(self.token_endpoint, params)


class RefreshTokenFlow(AuthFlow):
    variant = FlowVariant.REFRESH_TOKEN

    def __init__(
        self,
        config: OAuthConfig,
        is_sandbox: bool = False,
        refresh_token: Optional[str] = None,
    ):
        super().__init__(config, is_sandbox)
        if not refresh_token:
            raise MissingRefreshTokenError(
                "No refresh token stored, run a flow that issues one first"
            )
        self._refresh_token = refresh_token

    def build_token_request(self, **kwargs: Any) -> OutboundRequest:
        params = {"grant_type": "refresh_token", "refresh_token": self._refresh_token}
        params.update(self._client_params())
        return OutboundRequest.form_post(self.token_endpoint, params)


class SamlAssertionFlow(AuthFlow):
    """Exchanges a pre-signed SAML assertion read from disk."""

    variant = FlowVariant.SAML_ASSERTION

    def build_token_request(self, **kwargs: Any) -> OutboundRequest:
        assertion_xml = _read_text(self.config.saml_assertion_path, "SAML assertion")
        encoded = base64.b64encode(assertion_xml.encode("utf-8")).decode("ascii")
        params = {
            "grant_type": "assertion",
            "assertion_type": SAML_SSO_ASSERTION_TYPE,
            "assertion": encoded,
        }
        return OutboundRequest.form_post(self.token_endpoint, params)


FLOW_CLASSES: Dict[FlowVariant, Type[AuthFlow]] = {
    cls.variant: cls
    for cls in (
        UserAgentFlow,
        WebServerFlow,
        JwtBearerFlow,
        SamlBearerFlow,
        UsernamePasswordFlow,
        DeviceFlow,
        RefreshTokenFlow,
        SamlAssertionFlow,
    )
}


def create_flow(
    variant: Union[FlowVariant, str],
    config: OAuthConfig,
    is_sandbox: bool = False,
    **options: Any,
) -> AuthFlow:
    """
    Instantiate the flow class for ``variant``.

    Args:
        variant: Grant type to run
        config: Connected app configuration
        is_sandbox: Target the sandbox login host
        **options: Variant specific arguments (``mode``, ``refresh_token``)
    """
    flow_class = FLOW_CLASSES[FlowVariant(variant)]
    logger.debug(f"Creating {flow_class.__name__} (sandbox={is_sandbox})")
    return flow_class(config, is_sandbox, **options)
