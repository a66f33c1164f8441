"""Shared fixtures: configuration, key material and fake provider responses."""

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from sf_oauth_flows.crypto import sign_identity
from sf_oauth_flows.oauth_config import OAuthConfig
from sf_oauth_flows.transport import HttpExecutor

CLIENT_SECRET = "test_client_secret"
IDENTITY_URL = "https://login.salesforce.com/id/00Dx0000000BV7z/005x00000012Q9P"


@pytest.fixture
def config():
    """Provide a connected app configuration."""
    return OAuthConfig(
        client_id="test_client_id",
        client_secret=CLIENT_SECRET,
        callback_url="https://localhost:8081/oauthcallback",
        username="user@example.com",
    )


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def private_key_pem(rsa_key) -> bytes:
    return rsa_key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )


@pytest.fixture(scope="session")
def public_key_pem(rsa_key) -> bytes:
    return rsa_key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )


@pytest.fixture(scope="session")
def certificate_pem(rsa_key) -> bytes:
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "sf-oauth-test")])
    now = datetime.now(timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(rsa_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
        .sign(rsa_key, hashes.SHA256())
    )
    return certificate.public_bytes(serialization.Encoding.PEM)


@pytest.fixture
def key_files(tmp_path, private_key_pem, certificate_pem):
    """Write the key pair to disk and return (key_path, cert_path)."""
    key_path = tmp_path / "key.pem"
    cert_path = tmp_path / "server.crt"
    key_path.write_bytes(private_key_pem)
    cert_path.write_bytes(certificate_pem)
    return key_path, cert_path


@pytest.fixture
def token_response():
    """Factory for signed token endpoint bodies."""

    def make(access_token="test_access_token", signed=True, **extra):
        body = {
            "access_token": access_token,
            "instance_url": "https://na1.salesforce.com",
            "token_type": "Bearer",
        }
        if signed:
            issued_at = "1278448832702"
            body["id"] = IDENTITY_URL
            body["issued_at"] = issued_at
            body["signature"] = sign_identity(IDENTITY_URL, issued_at, CLIENT_SECRET)
        body.update(extra)
        return json.dumps(body)

    return make


@pytest.fixture
def make_executor():
    """Build an HttpExecutor whose requests are answered by ``handler``."""

    def make(handler):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return HttpExecutor(client=client)

    return make
