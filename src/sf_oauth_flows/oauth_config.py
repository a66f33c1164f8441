# sf_oauth_flows/oauth_config.py
"""Connected app configuration."""

from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

AUTHORIZE_PATH = "/services/oauth2/authorize"
TOKEN_PATH = "/services/oauth2/token"


class OAuthConfig(BaseModel):
    """Settings of the connected app the flows authenticate against."""

    client_id: str
    client_secret: Optional[str] = None
    callback_url: Optional[str] = None
    base_url: str = "https://login.salesforce.com"
    sandbox_url: str = "https://test.salesforce.com"
    username: Optional[str] = None
    api_version: str = "v45.0"
    scopes: Optional[List[str]] = None

    # Key material for signed bearer assertions
    private_key_path: Optional[Path] = None
    certificate_path: Optional[Path] = None
    saml_assertion_path: Path = Path("data/axiomSamlAssertion.xml")
    saml_issuer: Optional[str] = None
    saml_audience: Optional[str] = None
    jwt_lifetime: int = Field(default=180, gt=0)

    result_location: str = "queryresult"
    enforce_state: bool = True
    timeout: float = Field(default=30.0, gt=0)

    @field_validator("client_id")
    @classmethod
    def _client_id_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("client_id must not be empty")
        return value

    @field_validator("base_url", "sandbox_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    def get_base_url(self, is_sandbox: bool = False) -> str:
        """Return the login host for production or sandbox orgs."""
        return self.sandbox_url if is_sandbox else self.base_url

    def get_authorize_endpoint(self, is_sandbox: bool = False) -> str:
        return self.get_base_url(is_sandbox) + AUTHORIZE_PATH

    def get_token_endpoint(self, is_sandbox: bool = False) -> str:
        return self.get_base_url(is_sandbox) + TOKEN_PATH

    def get_scope(self) -> Optional[str]:
        """Scopes joined the way the token endpoint expects them."""
        if not self.scopes:
            return None
        return " ".join(self.scopes)
