# sf_oauth_flows/session.py
"""A login session: one active flow, its refresh token and its device poller."""

import asyncio
import json
import logging
from typing import Any, Mapping, Optional, Union

from .device_poller import DevicePoller, Sleep, poll_until_complete
from .exceptions import NoActiveFlowError, UnsupportedStepError
from .flows import AuthFlow, DeviceFlow, create_flow
from .models import (
    CallbackResult,
    DeviceAuthorization,
    FlowContext,
    FlowVariant,
    OutboundRequest,
    OutcomeKind,
    PollTick,
    RedirectInstruction,
    TokenOutcome,
)
from .oauth_config import OAuthConfig
from .token_manager import TokenManager
from .token_validator import TokenResponseValidator
from .transport import HttpExecutor

logger = logging.getLogger(__name__)

_INTERACTIVE_VARIANTS = (
    FlowVariant.USER_AGENT,
    FlowVariant.WEB_SERVER,
    FlowVariant.DEVICE,
)


class OAuthSession:
    """Runs flows for one user and routes callbacks and poll ticks to them."""

    def __init__(
        self,
        config: OAuthConfig,
        executor: Optional[HttpExecutor] = None,
        token_manager: Optional[TokenManager] = None,
        name: str = "default",
    ):
        """
        Initialize session.

        Args:
            config: Connected app configuration
            executor: HTTP executor (a private one is created if not provided)
            token_manager: Token store shared with other sessions, if any
            name: Key of this session in the token manager
        """
        self.config = config
        self._owns_executor = executor is None
        self.executor = executor or HttpExecutor(timeout=config.timeout)
        self.token_manager = token_manager or TokenManager()
        self.validator = TokenResponseValidator(
            client_secret=config.client_secret,
            api_version=config.api_version,
            result_location=config.result_location,
        )
        self.name = name
        self.flow: Optional[AuthFlow] = None
        self.device_poller: Optional[DevicePoller] = None

    @property
    def context(self) -> Optional[FlowContext]:
        return self.flow.context if self.flow else None

    @property
    def refresh_token(self) -> Optional[str]:
        return self.token_manager.get_refresh_token(self.name)

    async def aclose(self) -> None:
        if self._owns_executor:
            await self.executor.aclose()

    def start(
        self,
        variant: Union[FlowVariant, str],
        is_sandbox: bool = False,
        **options: Any,
    ) -> AuthFlow:
        """
        Start a new flow, replacing whatever flow was active.

        Args:
            variant: Grant type to run
            is_sandbox: Target the sandbox login host
            **options: Variant specific arguments, see ``create_flow``
        """
        variant = FlowVariant(variant)
        if variant == FlowVariant.REFRESH_TOKEN:
            options.setdefault("refresh_token", self.refresh_token)
        self.flow = create_flow(variant, self.config, is_sandbox, **options)
        self.cancel_device()
        self.device_poller = None
        logger.info(f"Started {variant.value} flow for session {self.name}")
        return self.flow

    def _require_flow(self) -> AuthFlow:
        if self.flow is None:
            raise NoActiveFlowError("No flow started for this session")
        return self.flow

    def authorize(self) -> RedirectInstruction:
        """Build the authorization redirect for the user agent and web server flows."""
        flow = self._require_flow()
        if flow.variant == FlowVariant.DEVICE:
            raise UnsupportedStepError(
                "Use start_device_authorization() for the device flow"
            )
        request = flow.build_authorization_request()
        return RedirectInstruction(location=request.url)

    def check_callback(self, params: Mapping[str, Any]) -> CallbackResult:
        """Compare the state of a callback without exchanging anything."""
        flow = self._require_flow()
        if flow.variant not in (FlowVariant.USER_AGENT, FlowVariant.WEB_SERVER):
            raise UnsupportedStepError(f"{flow.variant.value} flow has no callback")
        return flow.consume_callback(params)

    async def handle_callback(self, params: Mapping[str, Any]) -> TokenOutcome:
        """
        Finish the web server flow with the parameters of the callback URL.

        A state mismatch yields a STATE_MISMATCH outcome. With
        ``enforce_state`` on, no token request is sent in that case.
        """
        flow = self._require_flow()
        if flow.variant != FlowVariant.WEB_SERVER:
            raise UnsupportedStepError(
                f"{flow.variant.value} flow does not exchange a code"
            )
        callback = flow.consume_callback(params)

        if not callback.state_matches:
            if self.config.enforce_state:
                return TokenOutcome(
                    kind=OutcomeKind.STATE_MISMATCH,
                    error="state_mismatch",
                    error_description="Returned state does not match the one sent",
                )
            logger.warning("Continuing despite state mismatch (enforce_state off)")

        if not callback.code:
            return TokenOutcome(
                kind=OutcomeKind.PROVIDER_REJECTION,
                error=params.get("error") or "missing_code",
                error_description=params.get("error_description"),
            )

        return await self._exchange(flow.build_token_request(code=callback.code))

    async def request_token(self, **credentials: Any) -> TokenOutcome:
        """Run the token step of a flow that needs no user interaction."""
        flow = self._require_flow()
        if flow.variant in _INTERACTIVE_VARIANTS:
            raise UnsupportedStepError(
                f"{flow.variant.value} flow cannot request a token directly"
            )
        return await self._exchange(flow.build_token_request(**credentials))

    async def refresh(self, is_sandbox: Optional[bool] = None) -> TokenOutcome:
        """Exchange the stored refresh token for a new access token."""
        if is_sandbox is None:
            is_sandbox = self.flow.is_sandbox if self.flow else False
        self.start(FlowVariant.REFRESH_TOKEN, is_sandbox=is_sandbox)
        return await self.request_token()

    async def start_device_authorization(
        self,
    ) -> Union[DeviceAuthorization, TokenOutcome]:
        """
        Ask the provider for a device and user code.

        Returns:
            DeviceAuthorization to display, or the classified failure
        """
        flow = self._require_flow()
        if not isinstance(flow, DeviceFlow):
            raise UnsupportedStepError(
                f"{flow.variant.value} flow is not a device flow"
            )

        logger.info("Sending request to get device code...")
        response = await self.executor.execute(flow.build_authorization_request())
        if response.failed:
            return self.validator.validate(None, response.error)

        try:
            data = json.loads(response.body or "")
        except ValueError:
            data = None
        authorization = (
            flow.consume_callback(data) if isinstance(data, dict) else None
        )
        if authorization is None:
            return self.validator.validate(response.body)

        self.cancel_device()
        self.device_poller = DevicePoller(
            flow, self.validator, self.executor.execute, authorization
        )
        return authorization

    async def poll_device(self) -> PollTick:
        """Advance device polling by one tick."""
        poller = self.device_poller
        if poller is None:
            raise NoActiveFlowError("No device authorization in progress")
        tick = await poller.tick()
        self._finish_device_tick(poller, tick)
        return tick

    async def wait_for_device(self, sleep: Sleep = asyncio.sleep) -> PollTick:
        """
        Poll until the device flow ends, sleeping between ticks.

        Starting another flow meanwhile cancels the loop. Its result is then
        neither captured nor allowed to clear the new flow's poller.
        """
        poller = self.device_poller
        if poller is None:
            raise NoActiveFlowError("No device authorization in progress")
        logger.info("Starting polling for authorization...")
        tick = await poll_until_complete(poller, sleep)
        self._finish_device_tick(poller, tick)
        return tick

    def _finish_device_tick(self, poller: DevicePoller, tick: PollTick) -> None:
        if poller is not self.device_poller:
            logger.debug("Ignoring poll result of a replaced device flow")
            return
        if tick.outcome is not None:
            self._capture(tick.outcome)
        if tick.done:
            self.device_poller = None

    def cancel_device(self) -> None:
        if self.device_poller is not None:
            self.device_poller.cancel()

    async def _exchange(self, request: OutboundRequest) -> TokenOutcome:
        response = await self.executor.execute(request)
        outcome = self.validator.validate(response.body, response.error)
        self._capture(outcome)
        return outcome

    def _capture(self, outcome: TokenOutcome) -> None:
        if outcome.is_success and outcome.token_result is not None:
            self.token_manager.save_tokens(self.name, outcome.token_result)
