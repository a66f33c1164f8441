"""Tests for OAuthSession."""

import json
import logging
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from sf_oauth_flows.exceptions import (
    MissingRefreshTokenError,
    NoActiveFlowError,
    UnsupportedStepError,
)
from sf_oauth_flows.models import (
    DeviceAuthorization,
    DevicePollStatus,
    FlowVariant,
    OutcomeKind,
    TokenResult,
)
from sf_oauth_flows.session import OAuthSession
from sf_oauth_flows.token_manager import TokenManager

TOKEN_URL = "https://login.salesforce.com/services/oauth2/token"


class Provider:
    """Records requests and answers them with queued bodies."""

    def __init__(self):
        self.requests = []
        self.bodies = []

    def queue(self, *bodies):
        self.bodies.extend(bodies)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        body = self.bodies.pop(0)
        status = 400 if '"error"' in body else 200
        return httpx.Response(status, text=body)

    def form(self, index=-1):
        return parse_qs(self.requests[index].content.decode())


def state_of(instruction):
    return parse_qs(urlsplit(instruction.location).query)["state"][0]


class TestOAuthSession:
    """Test flows run through a session."""

    @pytest.fixture
    def provider(self):
        return Provider()

    @pytest.fixture
    def session(self, config, provider, make_executor):
        return OAuthSession(config, executor=make_executor(provider))

    def test_operations_need_a_flow(self, session):
        """Test steps before start() raise."""
        assert session.context is None
        with pytest.raises(NoActiveFlowError):
            session.authorize()

    async def test_web_server_round_trip(self, session, provider, token_response):
        """Authorize, come back with a code, exchange it."""
        session.start(FlowVariant.WEB_SERVER)
        instruction = session.authorize()
        assert instruction.location.startswith(
            "https://login.salesforce.com/services/oauth2/authorize?"
        )
        assert instruction.bundle is None

        provider.queue(token_response(access_token="abc123-token"))
        outcome = await session.handle_callback(
            {"code": "abc123", "state": state_of(instruction)}
        )

        assert outcome.is_success
        assert outcome.token_result.access_token == "abc123-token"
        assert outcome.redirect.location == "queryresult"
        assert "AccToken=abc123-token" in outcome.redirect.bundle.as_cookies()

        sent = provider.form()
        assert str(provider.requests[0].url) == TOKEN_URL
        assert sent["code"] == ["abc123"]
        assert sent["code_verifier"] == [session.context.code_verifier]
        assert session.token_manager.has_tokens("default")

    async def test_state_mismatch_sends_nothing(self, session, provider):
        """Test an enforced state mismatch sends no token request."""
        session.start(FlowVariant.WEB_SERVER)
        session.authorize()

        outcome = await session.handle_callback({"code": "abc123", "state": "forged"})

        assert outcome.kind == OutcomeKind.STATE_MISMATCH
        assert "forged" not in outcome.error_description
        assert outcome.token_result is None
        assert provider.requests == []

    async def test_state_mismatch_not_enforced(
        self, config, provider, make_executor, token_response, caplog
    ):
        """Test a mismatch only logs a warning with enforcement off."""
        config.enforce_state = False
        session = OAuthSession(config, executor=make_executor(provider))
        session.start(FlowVariant.WEB_SERVER)
        session.authorize()
        provider.queue(token_response())

        with caplog.at_level(logging.WARNING, logger="sf_oauth_flows.session"):
            outcome = await session.handle_callback(
                {"code": "abc123", "state": "forged"}
            )

        assert outcome.is_success
        assert len(provider.requests) == 1
        assert "Continuing despite state mismatch" in caplog.text

    async def test_callback_error(self, session, provider):
        """Test a provider error callback sends no token request."""
        session.start(FlowVariant.WEB_SERVER)
        state = state_of(session.authorize())

        outcome = await session.handle_callback(
            {
                "error": "access_denied",
                "error_description": "end-user denied authorization",
                "state": state,
            }
        )

        assert outcome.kind == OutcomeKind.PROVIDER_REJECTION
        assert outcome.error == "access_denied"
        assert outcome.error_description == "end-user denied authorization"
        assert provider.requests == []

    def test_check_callback_user_agent(self, session):
        """Test state checking of a user agent callback."""
        session.start(FlowVariant.USER_AGENT)
        state = state_of(session.authorize())

        assert session.check_callback({"state": state}).state_matches
        assert not session.check_callback({"state": "other"}).state_matches

    async def test_handle_callback_only_for_web_server(self, session):
        """Test only the web server flow exchanges a code."""
        session.start(FlowVariant.USER_AGENT)
        with pytest.raises(UnsupportedStepError):
            await session.handle_callback({"code": "x"})

    async def test_password_flow(self, session, provider, token_response):
        """Test a password grant stores its refresh token."""
        session.start(FlowVariant.USERNAME_PASSWORD)
        provider.queue(token_response(refresh_token="refresh-1"))

        outcome = await session.request_token(
            username="user@example.com", password="pw"
        )

        assert outcome.is_success
        assert provider.form()["grant_type"] == ["password"]
        assert session.refresh_token == "refresh-1"

    async def test_interactive_flows_cannot_request_token(self, session):
        """Test interactive flows cannot skip authorization."""
        session.start(FlowVariant.WEB_SERVER)
        with pytest.raises(UnsupportedStepError):
            await session.request_token()

    async def test_refresh_uses_stored_token(self, session, provider, token_response):
        """The refresh token of an earlier success is sent URL encoded."""
        session.start(FlowVariant.USERNAME_PASSWORD)
        provider.queue(token_response(refresh_token="5Aep861+/=="))
        await session.request_token(username="user@example.com", password="pw")

        provider.queue(token_response(access_token="second-token"))
        outcome = await session.refresh()

        assert outcome.is_success
        body = provider.requests[-1].content.decode()
        assert "refresh_token=5Aep861%2B%2F%3D%3D" in body
        assert session.token_manager.load_tokens("default").access_token == (
            "second-token"
        )
        assert session.refresh_token == "5Aep861+/=="

    async def test_refresh_without_token(self, session, provider):
        """Test refreshing without a stored token raises."""
        with pytest.raises(MissingRefreshTokenError):
            await session.refresh()
        assert provider.requests == []

    async def test_refresh_keeps_sandbox(self, config, make_executor, token_response):
        """Test a refresh goes to the host of the previous flow."""
        provider = Provider()
        manager = TokenManager()
        manager.save_tokens("default", TokenResult(refresh_token="r"))
        session = OAuthSession(
            config, executor=make_executor(provider), token_manager=manager
        )
        session.start(FlowVariant.USERNAME_PASSWORD, is_sandbox=True)
        provider.queue(token_response())

        await session.refresh()

        assert provider.requests[0].url.host == "test.salesforce.com"

    async def test_provider_rejection_keeps_no_tokens(self, session, provider):
        """Test a rejected grant stores nothing."""
        session.start(FlowVariant.USERNAME_PASSWORD)
        provider.queue(json.dumps({"error": "invalid_grant"}))

        outcome = await session.request_token(username="u", password="p")

        assert outcome.kind == OutcomeKind.PROVIDER_REJECTION
        assert not session.token_manager.has_tokens("default")

    async def test_transport_failure(self, config, make_executor):
        """Test a network error becomes a transport failure outcome."""
        def unreachable(request):
            raise httpx.ConnectError("connection refused", request=request)

        session = OAuthSession(config, executor=make_executor(unreachable))
        session.start(FlowVariant.USERNAME_PASSWORD)

        outcome = await session.request_token(username="u", password="p")

        assert outcome.kind == OutcomeKind.TRANSPORT_FAILURE
        assert "connection refused" in outcome.error

    async def test_start_replaces_previous_flow(self, session):
        """Test starting again replaces the flow and its verifier."""
        session.start(FlowVariant.WEB_SERVER)
        first = session.context.code_verifier
        session.start(FlowVariant.WEB_SERVER)
        assert session.context.code_verifier != first


class TestDeviceSession:
    """Test the device flow through a session."""

    DEVICE_RESPONSE = json.dumps(
        {
            "device_code": "dev-123",
            "user_code": "ABCD1234",
            "verification_uri": "https://login.salesforce.com/setup/connect",
            "interval": 5,
        }
    )

    @pytest.fixture
    def provider(self):
        return Provider()

    @pytest.fixture
    def session(self, config, provider, make_executor):
        session = OAuthSession(config, executor=make_executor(provider))
        session.start(FlowVariant.DEVICE)
        return session

    async def test_authorize_is_not_for_device(self, session):
        """Test the device flow has no redirect."""
        with pytest.raises(UnsupportedStepError):
            session.authorize()

    async def test_start_and_poll(self, session, provider, token_response):
        """Test device authorization followed by tick by tick polling."""
        provider.queue(
            self.DEVICE_RESPONSE,
            json.dumps({"error": "authorization_pending"}),
            token_response(),
        )

        authorization = await session.start_device_authorization()
        assert isinstance(authorization, DeviceAuthorization)
        assert authorization.user_code == "ABCD1234"
        assert provider.form(0)["response_type"] == ["device_code"]

        pending = await session.poll_device()
        assert pending.status == DevicePollStatus.PENDING
        assert session.device_poller is not None

        done = await session.poll_device()
        assert done.status == DevicePollStatus.AUTHORIZED
        assert session.device_poller is None
        assert session.token_manager.has_tokens("default")

        with pytest.raises(NoActiveFlowError):
            await session.poll_device()

    async def test_wait_for_device(self, session, provider, token_response):
        """Test waiting honours slow_down between polls."""
        provider.queue(
            self.DEVICE_RESPONSE,
            json.dumps({"error": "slow_down"}),
            token_response(),
        )
        sleeps = []

        async def fake_sleep(seconds):
            sleeps.append(seconds)

        await session.start_device_authorization()
        tick = await session.wait_for_device(sleep=fake_sleep)

        assert tick.status == DevicePollStatus.AUTHORIZED
        assert sleeps == [10]
        assert session.device_poller is None

    async def test_cancel(self, session, provider):
        """Test cancelling stops polling without a request."""
        provider.queue(self.DEVICE_RESPONSE)
        await session.start_device_authorization()

        session.cancel_device()
        tick = await session.poll_device()

        assert tick.status == DevicePollStatus.CANCELLED
        assert len(provider.requests) == 1

    async def test_error_response(self, session, provider):
        """Test a rejected device request starts no polling."""
        provider.queue(json.dumps({"error": "invalid_client_id"}))

        outcome = await session.start_device_authorization()

        assert outcome.kind == OutcomeKind.PROVIDER_REJECTION
        assert outcome.error == "invalid_client_id"
        assert session.device_poller is None

    async def test_transport_failure(self, config, make_executor):
        """Test a network error on the device request."""
        def unreachable(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        session = OAuthSession(config, executor=make_executor(unreachable))
        session.start(FlowVariant.DEVICE)

        outcome = await session.start_device_authorization()

        assert outcome.kind == OutcomeKind.TRANSPORT_FAILURE

    async def test_device_calls_need_device_flow(self, session):
        """Test device steps refuse other flows."""
        session.start(FlowVariant.WEB_SERVER)
        with pytest.raises(UnsupportedStepError):
            await session.start_device_authorization()
        with pytest.raises(NoActiveFlowError):
            await session.wait_for_device()

    async def test_new_flow_stops_device_polling(self, session, provider):
        """Test starting another flow ends a running wait_for_device."""
        provider.queue(
            self.DEVICE_RESPONSE,
            json.dumps({"error": "authorization_pending"}),
        )
        await session.start_device_authorization()
        sleeps = []

        async def switching_sleep(seconds):
            sleeps.append(seconds)
            session.start(FlowVariant.USERNAME_PASSWORD)

        tick = await session.wait_for_device(sleep=switching_sleep)

        assert tick.status == DevicePollStatus.CANCELLED
        assert sleeps == [5]
        assert len(provider.requests) == 2
        assert session.device_poller is None
        assert session.flow.variant == FlowVariant.USERNAME_PASSWORD
        assert not session.token_manager.has_tokens("default")

    async def test_replaced_device_flow_keeps_new_poller(self, session, provider):
        """Test a stale polling loop leaves the restarted device flow alone."""
        provider.queue(
            self.DEVICE_RESPONSE,
            json.dumps({"error": "authorization_pending"}),
            self.DEVICE_RESPONSE.replace("dev-123", "dev-456"),
        )
        await session.start_device_authorization()
        old_poller = session.device_poller

        async def restarting_sleep(seconds):
            session.start(FlowVariant.DEVICE)
            await session.start_device_authorization()

        tick = await session.wait_for_device(sleep=restarting_sleep)

        assert tick.status == DevicePollStatus.CANCELLED
        assert old_poller.cancelled
        assert session.device_poller is not None
        assert session.device_poller is not old_poller
        assert session.device_poller.state.device_code == "dev-456"
        assert session.device_poller.status == DevicePollStatus.PENDING
        assert len(provider.requests) == 3

    async def test_unusable_interval_uses_default(self, session, provider):
        """Test a non-numeric poll interval falls back to five seconds."""
        provider.queue(self.DEVICE_RESPONSE.replace("5}", '"abc"}'))

        authorization = await session.start_device_authorization()

        assert isinstance(authorization, DeviceAuthorization)
        assert authorization.interval == 5
        assert session.device_poller.state.interval == 5
