# sf_oauth_flows/token_validator.py
"""Validation and classification of token endpoint responses."""

import json
import logging
from typing import Any, Dict, Optional, Union

from .crypto import decode_id_token, verify_identity_signature
from .models import (
    OutcomeKind,
    RedirectInstruction,
    TokenBundle,
    TokenOutcome,
    TokenResult,
)

logger = logging.getLogger(__name__)


def _as_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


class TokenResponseValidator:
    """Turns raw token endpoint bodies into classified outcomes."""

    def __init__(
        self,
        client_secret: Optional[str],
        api_version: str,
        result_location: str = "queryresult",
    ):
        """
        Initialize validator.

        Args:
            client_secret: Secret used to check the identity URL signature
            api_version: API version reported to the presentation layer
            result_location: Redirect target after a successful exchange
        """
        self.client_secret = client_secret
        self.api_version = api_version
        self.result_location = result_location

    def validate(
        self,
        body: Optional[str],
        transport_error: Optional[Union[BaseException, str]] = None,
    ) -> TokenOutcome:
        """
        Classify a token endpoint response.

        Args:
            body: Raw response body (JSON expected)
            transport_error: Set when the request never got a response

        Returns:
            TokenOutcome describing success or the kind of failure
        """
        if transport_error is not None:
            logger.warning(f"Token request failed in transport: {transport_error}")
            return TokenOutcome(
                kind=OutcomeKind.TRANSPORT_FAILURE, error=str(transport_error)
            )

        try:
            data = json.loads(body or "")
        except (TypeError, ValueError) as e:
            logger.warning(f"Token response is not valid JSON: {e}")
            return TokenOutcome(
                kind=OutcomeKind.PARSE_FAILURE, error=str(e), raw_body=body
            )
        if not isinstance(data, dict):
            return TokenOutcome(
                kind=OutcomeKind.PARSE_FAILURE,
                error="Token response is not a JSON object",
                raw_body=body,
            )

        result = self._to_token_result(data)

        if result.identity_url and result.issued_at:
            if not self._signature_valid(result):
                logger.warning(
                    f"Signature not correct for {result.identity_url}, "
                    "identity cannot be confirmed"
                )
                return TokenOutcome(
                    kind=OutcomeKind.IDENTITY_VERIFICATION_FAILURE,
                    error="Signature not correct - Identity cannot be confirmed",
                    raw_body=body,
                )

        outcome = TokenOutcome(kind=OutcomeKind.PROVIDER_REJECTION, raw_body=body)

        if result.id_token:
            decoded = decode_id_token(result.id_token)
            if decoded:
                outcome.id_token_header, outcome.id_token_claims = decoded
                logger.debug(f"ID Token header: {outcome.id_token_header}")
                logger.debug(f"ID Token body: {outcome.id_token_claims}")

        if result.access_token:
            outcome.kind = OutcomeKind.SUCCESS
            outcome.token_result = result
            outcome.redirect = RedirectInstruction(
                location=self.result_location,
                bundle=TokenBundle(
                    access_token=result.access_token,
                    api_version=self.api_version,
                    instance_url=result.instance_url,
                    identity_url=result.identity_url,
                ),
            )
            return outcome

        outcome.error = _as_str(data.get("error"))
        outcome.error_description = _as_str(data.get("error_description"))
        logger.info(f"Provider rejected token request: {outcome.error}")
        return outcome

    def _signature_valid(self, result: TokenResult) -> bool:
        if not self.client_secret:
            logger.warning("No client secret configured to verify the signature")
            return False
        return verify_identity_signature(
            result.identity_url or "",
            result.issued_at or "",
            result.signature,
            self.client_secret,
        )

    def _to_token_result(self, data: Dict[str, Any]) -> TokenResult:
        return TokenResult(
            access_token=_as_str(data.get("access_token")),
            refresh_token=_as_str(data.get("refresh_token")),
            instance_url=_as_str(data.get("instance_url")),
            identity_url=_as_str(data.get("id")),
            issued_at=_as_str(data.get("issued_at")),
            signature=_as_str(data.get("signature")),
            id_token=_as_str(data.get("id_token")),
            api_version=self.api_version,
            token_type=_as_str(data.get("token_type")) or "Bearer",
            scope=_as_str(data.get("scope")),
        )
