# sf_oauth_flows/crypto.py
"""PKCE, identity signatures and bearer assertion helpers."""

import base64
import hashlib
import hmac
import logging
import secrets
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple, Union

import jwt
from lxml import etree
from signxml import (
    CanonicalizationMethod,
    DigestAlgorithm,
    SignatureConstructionMethod,
    SignatureMethod,
    XMLSigner,
)

from .exceptions import AssertionBuildError

logger = logging.getLogger(__name__)

SAML_NS = "urn:oasis:names:tc:SAML:2.0:assertion"
DSIG_NS = "http://www.w3.org/2000/09/xmldsig#"
BEARER_METHOD = "urn:oasis:names:tc:SAML:2.0:cm:bearer"
NAMEID_UNSPECIFIED = "urn:oasis:names:tc:SAML:1.1:nameid-format:unspecified"
AUTHN_CONTEXT_UNSPECIFIED = "urn:oasis:names:tc:SAML:2.0:ac:classes:unspecified"

# 96 random bytes encode to a 128 character verifier, the RFC 7636 maximum.
CODE_VERIFIER_BYTES = 96


def base64url_encode(data: Union[bytes, str]) -> str:
    """Base64url encode without padding."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def base64url_decode(text: str) -> bytes:
    """Decode base64url text, restoring any stripped padding."""
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


def generate_state() -> str:
    """Return an unpredictable anti-forgery token."""
    return secrets.token_urlsafe(32)


def generate_code_verifier() -> str:
    return base64url_encode(secrets.token_bytes(CODE_VERIFIER_BYTES))


def generate_code_challenge(verifier: str) -> str:
    """S256 challenge for a PKCE code verifier."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64url_encode(digest)


def sign_identity(identity_url: str, issued_at: str, client_secret: str) -> str:
    """
    Compute the signature the provider attaches to a token response.

    Args:
        identity_url: The ``id`` field of the response
        issued_at: The ``issued_at`` field of the response
        client_secret: Consumer secret of the connected app

    Returns:
        Base64 encoded HMAC-SHA256 of ``identity_url + issued_at``
    """
    mac = hmac.new(
        client_secret.encode("utf-8"),
        f"{identity_url}{issued_at}".encode("utf-8"),
        hashlib.sha256,
    )
    return base64.b64encode(mac.digest()).decode("ascii")


def verify_identity_signature(
    identity_url: str,
    issued_at: str,
    signature: Optional[str],
    client_secret: str,
) -> bool:
    if not signature:
        return False
    expected = sign_identity(identity_url, issued_at, client_secret)
    return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8"))


def build_jwt_assertion(
    client_id: str,
    subject: str,
    audience: str,
    private_key: Union[str, bytes],
    lifetime: int = 180,
    now: Optional[int] = None,
) -> str:
    """
    Build an RS256 signed JWT for the JWT bearer grant.

    Args:
        client_id: Consumer key, used as issuer
        subject: Username the token is requested for
        audience: Login URL of the org (production or sandbox)
        private_key: PEM encoded RSA private key
        lifetime: Seconds until the assertion expires
        now: Override of the current epoch time

    Returns:
        Compact serialized JWT

    Raises:
        AssertionBuildError: If the key cannot be used for signing
    """
    issued = int(now if now is not None else time.time())
    claims = {
        "iss": client_id,
        "sub": subject,
        "aud": audience,
        "exp": issued + lifetime,
    }
    try:
        return jwt.encode(claims, private_key, algorithm="RS256")
    except (ValueError, TypeError, jwt.PyJWTError) as e:
        raise AssertionBuildError(f"Could not sign JWT assertion: {e}") from e


def _saml_time(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def _saml(tag: str) -> str:
    return f"{{{SAML_NS}}}{tag}"


def build_saml_assertion_xml(
    issuer: str,
    subject: str,
    audience: str,
    recipient: str,
    lifetime: int = 180,
    now: Optional[datetime] = None,
) -> etree._Element:
    """Build an unsigned SAML 2.0 bearer assertion with a signature placeholder."""
    now = now or datetime.now(timezone.utc)
    not_after = _saml_time(now + timedelta(seconds=lifetime))

    assertion = etree.Element(
        _saml("Assertion"),
        nsmap={"saml": SAML_NS},
        ID=f"_{uuid.uuid4().hex}",
        IssueInstant=_saml_time(now),
        Version="2.0",
    )
    etree.SubElement(assertion, _saml("Issuer")).text = issuer
    # signxml replaces this element with the enveloped signature
    etree.SubElement(
        assertion, f"{{{DSIG_NS}}}Signature", nsmap={"ds": DSIG_NS}, Id="placeholder"
    )

    subject_el = etree.SubElement(assertion, _saml("Subject"))
    name_id = etree.SubElement(subject_el, _saml("NameID"), Format=NAMEID_UNSPECIFIED)
    name_id.text = subject
    confirmation = etree.SubElement(
        subject_el, _saml("SubjectConfirmation"), Method=BEARER_METHOD
    )
    etree.SubElement(
        confirmation,
        _saml("SubjectConfirmationData"),
        NotOnOrAfter=not_after,
        Recipient=recipient,
    )

    conditions = etree.SubElement(
        assertion,
        _saml("Conditions"),
        NotBefore=_saml_time(now),
        NotOnOrAfter=not_after,
    )
    restriction = etree.SubElement(conditions, _saml("AudienceRestriction"))
    etree.SubElement(restriction, _saml("Audience")).text = audience

    statement = etree.SubElement(
        assertion, _saml("AuthnStatement"), AuthnInstant=_saml_time(now)
    )
    context = etree.SubElement(statement, _saml("AuthnContext"))
    etree.SubElement(context, _saml("AuthnContextClassRef")).text = (
        AUTHN_CONTEXT_UNSPECIFIED
    )
    return assertion


def sign_saml_assertion(
    assertion: etree._Element,
    private_key: Union[str, bytes],
    certificate: Union[str, bytes],
) -> etree._Element:
    """Apply an enveloped RSA-SHA256 signature to ``assertion``."""
    signer = XMLSigner(
        method=SignatureConstructionMethod.enveloped,
        signature_algorithm=SignatureMethod.RSA_SHA256,
        digest_algorithm=DigestAlgorithm.SHA256,
        c14n_algorithm=CanonicalizationMethod.EXCLUSIVE_XML_CANONICALIZATION_1_0,
    )
    try:
        return signer.sign(assertion, key=private_key, cert=certificate)
    except (ValueError, TypeError) as e:
        raise AssertionBuildError(f"Could not sign SAML assertion: {e}") from e


def build_saml_bearer_assertion(
    issuer: str,
    subject: str,
    audience: str,
    recipient: str,
    private_key: Union[str, bytes],
    certificate: Union[str, bytes],
    lifetime: int = 180,
    now: Optional[datetime] = None,
) -> str:
    """Build, sign and base64url encode a SAML bearer assertion."""
    assertion = build_saml_assertion_xml(
        issuer, subject, audience, recipient, lifetime=lifetime, now=now
    )
    signed = sign_saml_assertion(assertion, private_key, certificate)
    return base64url_encode(etree.tostring(signed))


def decode_id_token(
    id_token: str,
) -> Optional[Tuple[Dict[str, Any], Dict[str, Any]]]:
    """
    Decode the header and claims of an ID token for display.

    The signature and the claims are NOT verified.

    Returns:
        ``(header, claims)`` or None if the token is malformed
    """
    try:
        header = jwt.get_unverified_header(id_token)
        claims = jwt.decode(id_token, options={"verify_signature": False})
    except jwt.PyJWTError as e:
        logger.warning(f"Could not decode ID token: {e}")
        return None
    return header, claims
