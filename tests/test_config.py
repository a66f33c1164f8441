"""Tests for OAuthConfig."""

import pytest
from pydantic import ValidationError

from sf_oauth_flows.oauth_config import OAuthConfig


class TestOAuthConfig:
    """Test connected app configuration."""

    def test_defaults(self):
        """Test configuration defaults."""
        config = OAuthConfig(client_id="client")
        assert config.base_url == "https://login.salesforce.com"
        assert config.sandbox_url == "https://test.salesforce.com"
        assert config.api_version == "v45.0"
        assert config.result_location == "queryresult"
        assert config.enforce_state
        assert config.jwt_lifetime == 180
        assert config.get_scope() is None

    def test_endpoints(self):
        """Test production and sandbox endpoints."""
        config = OAuthConfig(client_id="client")
        assert (
            config.get_authorize_endpoint()
            == "https://login.salesforce.com/services/oauth2/authorize"
        )
        assert (
            config.get_token_endpoint(is_sandbox=True)
            == "https://test.salesforce.com/services/oauth2/token"
        )

    def test_trailing_slash_is_stripped(self):
        """Test a trailing slash on the base URL is dropped."""
        config = OAuthConfig(
            client_id="client", base_url="https://example.my.salesforce.com/"
        )
        assert (
            config.get_token_endpoint()
            == "https://example.my.salesforce.com/services/oauth2/token"
        )

    def test_scope(self):
        """Test scopes are joined with spaces."""
        config = OAuthConfig(client_id="client", scopes=["api", "refresh_token"])
        assert config.get_scope() == "api refresh_token"

    @pytest.mark.parametrize(
        "values",
        [
            {"client_id": ""},
            {"client_id": "   "},
            {"client_id": "client", "jwt_lifetime": 0},
            {"client_id": "client", "timeout": -1},
        ],
    )
    def test_invalid(self, values):
        """Test invalid values are rejected."""
        with pytest.raises(ValidationError):
            OAuthConfig(**values)
