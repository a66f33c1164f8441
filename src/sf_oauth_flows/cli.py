#!/usr/bin/env python3
"""
Command line tool for trying out the OAuth flows of a connected app.

Each sub-command runs one grant type and prints the (redacted) result:
- user-agent / web-server: print the authorization URL, then (web server)
  read back the callback URL and exchange the code
- jwt / saml-bearer: sign an assertion and exchange it
- password: exchange username and password
- device: show a user code and poll until the user approves
- saml-assert: exchange a pre-signed SAML assertion read from disk
- refresh: exchange a refresh token

Usage:
    sf-oauth jwt --client-id <id> --username <user> --private-key key.pem
    sf-oauth web-server --client-id <id> --client-secret <secret> --callback-url <url>
    sf-oauth device --client-id <id> --sandbox
"""

import argparse
import asyncio
import getpass
import logging
import sys
from pathlib import Path
from typing import Dict, Optional
from urllib.parse import parse_qsl, urlsplit

from pydantic import ValidationError

from .exceptions import OAuthFlowError
from .models import (
    DeviceAuthorization,
    FlowVariant,
    TokenOutcome,
    TokenResult,
    WebServerMode,
)
from .oauth_config import OAuthConfig
from .session import OAuthSession


def safe_display_token(token: str, prefix_len: int = 20, suffix_len: int = 6) -> str:
    """Safely display a token with most characters redacted."""
    if len(token) <= prefix_len + suffix_len:
        return f"{token[:10]}..."

    prefix = token[:prefix_len]
    suffix = token[-suffix_len:]
    redacted_len = len(token) - prefix_len - suffix_len

    return f"{prefix}...{'*' * min(redacted_len, 20)}...{suffix}"


def print_header(text: str):
    """Print a formatted header."""
    print("\n" + "=" * 60)
    print(text)
    print("=" * 60)


def print_outcome(outcome: TokenOutcome) -> int:
    """Print a token outcome and return the matching exit code."""
    if not outcome.is_success or outcome.token_result is None:
        print(f"\n❌ {outcome.kind.value}")
        if outcome.error:
            print(f"Error: {outcome.error}")
        if outcome.error_description:
            print(f"Description: {outcome.error_description}")
        if outcome.raw_body:
            print(f"Provider response: {outcome.raw_body}")
        return 1

    tokens = outcome.token_result
    print("\n✅ Authentication successful!")
    print(f"Access Token: {safe_display_token(tokens.access_token or '')}")
    print(f"Instance URL: {tokens.instance_url}")
    print(f"Identity URL: {tokens.identity_url}")
    print(f"API Version: {tokens.api_version}")
    if tokens.refresh_token:
        print(f"Refresh Token: {safe_display_token(tokens.refresh_token)}")
    if outcome.id_token_claims:
        print(f"ID Token subject: {outcome.id_token_claims.get('sub')}")
    if outcome.redirect:
        print(f"Redirect: {outcome.redirect.location}")
    return 0


def parse_callback_url(url: str) -> Dict[str, str]:
    """Extract query (or fragment) parameters from a pasted callback URL."""
    parts = urlsplit(url.strip())
    return dict(parse_qsl(parts.query or parts.fragment))


async def cmd_user_agent(config: OAuthConfig, is_sandbox: bool = False) -> int:
    """Print the implicit grant authorization URL."""
    print_header("User Agent Flow")
    session = OAuthSession(config)
    try:
        session.start(FlowVariant.USER_AGENT, is_sandbox=is_sandbox)
        redirect = session.authorize()
        print("Open this URL in a browser:\n")
        print(f"  {redirect.location}\n")
        print("The access token is returned in the fragment of the callback URL.")
        return 0
    finally:
        await session.aclose()


async def cmd_web_server(
    config: OAuthConfig,
    is_sandbox: bool = False,
    mode: WebServerMode = WebServerMode.PKCE_SECRET,
) -> int:
    """Run the authorization code flow with a pasted callback URL."""
    print_header(f"Web Server Flow ({mode.value})")
    session = OAuthSession(config)
    try:
        session.start(FlowVariant.WEB_SERVER, is_sandbox=is_sandbox, mode=mode)
        redirect = session.authorize()
        print("Open this URL in a browser and approve access:\n")
        print(f"  {redirect.location}\n")
        callback_url = input("Paste the URL you were redirected to: ")
        outcome = await session.handle_callback(parse_callback_url(callback_url))
        return print_outcome(outcome)
    finally:
        await session.aclose()


async def cmd_token(
    config: OAuthConfig,
    variant: FlowVariant,
    is_sandbox: bool = False,
    **credentials: str,
) -> int:
    """Run a flow that exchanges credentials or an assertion in one request."""
    print_header(f"{variant.value.replace('_', ' ').title()} Flow")
    session = OAuthSession(config)
    try:
        session.start(variant, is_sandbox=is_sandbox)
        outcome = await session.request_token(**credentials)
        return print_outcome(outcome)
    finally:
        await session.aclose()


async def cmd_password(
    config: OAuthConfig,
    is_sandbox: bool = False,
    username: Optional[str] = None,
    password: Optional[str] = None,
) -> int:
    username = username or config.username or input("Username: ")
    password = password or getpass.getpass("Password (with security token): ")
    return await cmd_token(
        config,
        FlowVariant.USERNAME_PASSWORD,
        is_sandbox,
        username=username,
        password=password,
    )


async def cmd_device(config: OAuthConfig, is_sandbox: bool = False) -> int:
    """Run the device flow, polling until the user approves."""
    print_header("Device Flow")
    session = OAuthSession(config)
    try:
        session.start(FlowVariant.DEVICE, is_sandbox=is_sandbox)
        result = await session.start_device_authorization()
        if not isinstance(result, DeviceAuthorization):
            return print_outcome(result)

        print(f"Now go to: {result.verification_uri}")
        print(f"And enter the code: {result.user_code}\n")
        print(f"Polling every {result.interval} seconds (Ctrl-C to cancel)...")
        tick = await session.wait_for_device()
        if tick.outcome is None:
            print(f"\n⚠️  Device flow ended: {tick.status.value}")
            return 1
        return print_outcome(tick.outcome)
    finally:
        await session.aclose()


async def cmd_refresh(
    config: OAuthConfig, refresh_token: str, is_sandbox: bool = False
) -> int:
    """Exchange a refresh token for a new access token."""
    print_header("Refresh Token Flow")
    session = OAuthSession(config)
    try:
        session.token_manager.save_tokens(
            session.name, TokenResult(refresh_token=refresh_token)
        )
        outcome = await session.refresh(is_sandbox=is_sandbox)
        return print_outcome(outcome)
    finally:
        await session.aclose()


def build_config(args: argparse.Namespace) -> OAuthConfig:
    values = {
        "client_id": args.client_id,
        "client_secret": args.client_secret,
        "callback_url": args.callback_url,
        "username": args.username,
        "private_key_path": args.private_key,
        "certificate_path": args.certificate,
    }
    if args.base_url:
        values["base_url"] = args.base_url
    if args.api_version:
        values["api_version"] = args.api_version
    if args.scopes:
        values["scopes"] = args.scopes
    if getattr(args, "assertion_file", None):
        values["saml_assertion_path"] = args.assertion_file
    return OAuthConfig(**values)


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--client-id", required=True, help="Consumer key")
    common.add_argument("--client-secret", help="Consumer secret")
    common.add_argument("--callback-url", help="Callback URL of the connected app")
    common.add_argument("--base-url", help="Login host (default: login.salesforce.com)")
    common.add_argument("--username", help="Subject for bearer assertion flows")
    common.add_argument("--private-key", type=Path, help="PEM private key")
    common.add_argument("--certificate", type=Path, help="PEM certificate")
    common.add_argument("--api-version", help="API version (default: v45.0)")
    common.add_argument("--scopes", nargs="+", help="OAuth scopes")
    common.add_argument(
        "--sandbox", action="store_true", help="Use the sandbox login host"
    )
    common.add_argument("--verbose", action="store_true", help="Debug logging")

    parser = argparse.ArgumentParser(
        description="OAuth flow tester for Salesforce connected apps",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sf-oauth jwt --client-id 3MVG9... --username me@example.com --private-key key.pem
  sf-oauth device --client-id 3MVG9... --sandbox
  sf-oauth refresh --client-id 3MVG9... --client-secret s3cr3t 5Aep861...
        """,
    )
    subparsers = parser.add_subparsers(dest="command", help="Flow to run")

    subparsers.add_parser(
        "user-agent", parents=[common], help="Print the implicit grant URL"
    )
    web_parser = subparsers.add_parser(
        "web-server", parents=[common], help="Authorization code flow"
    )
    web_parser.add_argument(
        "--mode",
        choices=[m.value for m in WebServerMode],
        default=WebServerMode.PKCE_SECRET.value,
        help="Client authentication at the token endpoint",
    )
    subparsers.add_parser("jwt", parents=[common], help="JWT bearer flow")
    subparsers.add_parser("saml-bearer", parents=[common], help="SAML bearer flow")
    password_parser = subparsers.add_parser(
        "password", parents=[common], help="Username-password flow"
    )
    password_parser.add_argument("--password", help="Password (prompted if omitted)")
    subparsers.add_parser("device", parents=[common], help="Device flow")
    assert_parser = subparsers.add_parser(
        "saml-assert", parents=[common], help="Exchange a pre-signed SAML assertion"
    )
    assert_parser.add_argument(
        "--assertion-file", type=Path, help="SAML assertion XML file"
    )
    refresh_parser = subparsers.add_parser(
        "refresh", parents=[common], help="Refresh token flow"
    )
    refresh_parser.add_argument("refresh_token", help="Refresh token to exchange")
    return parser


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    try:
        config = build_config(args)
        sandbox = args.sandbox
        if args.command == "user-agent":
            return asyncio.run(cmd_user_agent(config, sandbox))
        elif args.command == "web-server":
            return asyncio.run(
                cmd_web_server(config, sandbox, WebServerMode(args.mode))
            )
        elif args.command == "jwt":
            return asyncio.run(cmd_token(config, FlowVariant.JWT_BEARER, sandbox))
        elif args.command == "saml-bearer":
            return asyncio.run(cmd_token(config, FlowVariant.SAML_BEARER, sandbox))
        elif args.command == "password":
            return asyncio.run(
                cmd_password(config, sandbox, args.username, args.password)
            )
        elif args.command == "device":
            return asyncio.run(cmd_device(config, sandbox))
        elif args.command == "saml-assert":
            return asyncio.run(cmd_token(config, FlowVariant.SAML_ASSERTION, sandbox))
        elif args.command == "refresh":
            return asyncio.run(cmd_refresh(config, args.refresh_token, sandbox))
        else:  # pragma: no cover
            # This should never be reached due to argparse validation
            parser.print_help()
            return 1

    except KeyboardInterrupt:
        print("\n\n❌ Interrupted by user")
        return 130
    except ValidationError as e:
        print(f"\n❌ Invalid configuration: {e}")
        return 1
    except OAuthFlowError as e:
        print(f"\n❌ Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
