"""Fabits MCP Server.

An MCP server that lets a chat client log in to the Fabits investment
platform and follow payments and bank mandates to completion:
- OTP login, status, token refresh and logout
- Payment confirmation (bounded polling)
- Mandate confirmation (bounded polling)

Architecture:
- SessionRegistry hands out one TokenManager + FabitsAPIClient per user
- TokenManager persists tokens and renews them single-flight on 401/403
- stdio transport for a single local user, or a FastAPI app with the MCP
  streamable HTTP endpoint mounted at /mcp for several users

Run with:
    fabits-mcp                 # stdio
    fabits-mcp-http --port 3000
"""
import asyncio
import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from mcp.server.fastmcp import FastMCP
from starlette.routing import Mount

from .models import (
    CheckMandateStatusInput,
    CheckPaymentStatusInput,
    RequestOtpInput,
    UserInput,
    VerifyOtpInput,
)
from .sessions import SessionRegistry
from .tools import (
    check_mandate_status_tool,
    check_payment_status_tool,
    handle_error,
    logout_tool,
    refresh_token_tool,
    request_otp_tool,
    status_tool,
    verify_otp_tool,
)


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stderr,  # stdout carries the stdio MCP transport
)
logger = logging.getLogger(__name__)


registry = SessionRegistry()


# ==============================================================================
# MCP Server
# ==============================================================================

# Sessions live in our SessionRegistry, so the MCP transport can be stateless.
# With streamable_http_path="/streamable" and the app mounted at "/mcp", the
# endpoint is /mcp/streamable.
mcp = FastMCP(
    "fabits_mcp",
    stateless_http=True,
    streamable_http_path="/streamable",
)


@mcp.tool(
    name="fabits_request_otp",
    annotations={
        "title": "Request Login OTP",
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": False,
        "openWorldHint": True,
    }
)
async def fabits_request_otp(params: RequestOtpInput) -> str:
    """Start the login by sending an OTP to the user's phone.

    Args:
        params: Input parameters
            - phone_number (str): Phone number with country code
            - user_id (str): Caller identifier (multi-user mode only)

    Returns:
        Confirmation that the OTP was sent
    """
    try:
        async with registry.session(params.user_id) as session:
            return await request_otp_tool(params, session)
    except ValueError as e:
        return handle_error(e)


@mcp.tool(
    name="fabits_verify_otp",
    annotations={
        "title": "Verify Login OTP",
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": False,
        "openWorldHint": True,
    }
)
async def fabits_verify_otp(params: VerifyOtpInput) -> str:
    """Complete the login with the OTP the user received.

    Args:
        params: Input parameters
            - phone_number (str): Phone number the OTP was sent to
            - otp (str): The OTP
            - user_id (str): Caller identifier (multi-user mode only)

    Returns:
        Account summary of the logged-in user
    """
    try:
        async with registry.session(params.user_id) as session:
            return await verify_otp_tool(params, session)
    except ValueError as e:
        return handle_error(e)


@mcp.tool(
    name="fabits_status",
    annotations={
        "title": "Login Status",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False,
    }
)
async def fabits_status(params: UserInput) -> str:
    """Show whether the user is logged in and which account is active."""
    try:
        async with registry.session(params.user_id) as session:
            return await status_tool(session)
    except ValueError as e:
        return handle_error(e)


@mcp.tool(
    name="fabits_refresh_token",
    annotations={
        "title": "Refresh Session",
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": False,
        "openWorldHint": True,
    }
)
async def fabits_refresh_token(params: UserInput) -> str:
    """Extend the session by renewing the access token.

    Tokens are renewed automatically when a call is rejected; use this when
    the user asks for it or after an "Access Token Expired" message.
    """
    try:
        async with registry.session(params.user_id) as session:
            return await refresh_token_tool(session)
    except ValueError as e:
        return handle_error(e)


@mcp.tool(
    name="fabits_logout",
    annotations={
        "title": "Logout",
        "readOnlyHint": False,
        "destructiveHint": True,
        "idempotentHint": True,
        "openWorldHint": True,
    }
)
async def fabits_logout(params: UserInput) -> str:
    """Log out and delete the stored tokens."""
    try:
        async with registry.session(params.user_id) as session:
            return await logout_tool(session)
    except ValueError as e:
        return handle_error(e)


@mcp.tool(
    name="fabits_check_payment_status",
    annotations={
        "title": "Check Payment Status",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": True,
    }
)
async def fabits_check_payment_status(params: CheckPaymentStatusInput) -> str:
    """Wait for the payment of one or more orders to be approved or rejected.

    Checks repeatedly until the payment settles or the attempts run out. An
    unconfirmed payment is reported as still processing, not as failed.

    **Note**: With the defaults this can take up to 10 minutes.

    Args:
        params: Input parameters
            - order_numbers (list[str]): Order number(s) to check
            - max_attempts (int): Number of checks (1-60, default: 20)
            - interval_seconds (float): Seconds between checks (default: 30)
            - user_id (str): Caller identifier (multi-user mode only)
    """
    try:
        async with registry.session(params.user_id) as session:
            return await check_payment_status_tool(params, session)
    except ValueError as e:
        return handle_error(e)


@mcp.tool(
    name="fabits_check_mandate_status",
    annotations={
        "title": "Check Mandate Status",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": True,
    }
)
async def fabits_check_mandate_status(params: CheckMandateStatusInput) -> str:
    """Check whether a bank mandate has been approved.

    By default checks once. Set max_attempts above 1 to wait for the bank
    to finish e-mandate authorization.

    Args:
        params: Input parameters
            - mandate_id (str): Mandate ID from mandate registration
            - max_attempts (int): Number of checks (1-60, default: 1)
            - interval_seconds (float): Seconds between checks (default: 10)
            - user_id (str): Caller identifier (multi-user mode only)
    """
    try:
        async with registry.session(params.user_id) as session:
            return await check_mandate_status_tool(params, session)
    except ValueError as e:
        return handle_error(e)


# ==============================================================================
# HTTP Application (health + MCP)
# ==============================================================================

@asynccontextmanager
async def app_lifespan(app: FastAPI):
    """Run the MCP session manager and close HTTP clients on shutdown."""
    logger.info("[Server] Starting Fabits MCP Server (HTTP)")

    # Start MCP's session manager (required for streamable HTTP transport)
    async with mcp.session_manager.run():
        yield

    logger.info("[Server] Shutting down...")
    await registry.close()


app = FastAPI(
    title="Fabits MCP Server",
    description="MCP endpoint at `/mcp/streamable` for Fabits login, payment and mandate tools.",
    version="1.0.0",
    lifespan=app_lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.routes.append(Mount("/mcp", app=mcp.streamable_http_app()))


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "ok",
        "service": "fabits-mcp",
        "multi_user": registry.multi_user,
        "sessions": registry.session_count,
    }


# ==============================================================================
# Entry Points
# ==============================================================================

async def _run_stdio() -> None:
    try:
        await mcp.run_stdio_async()
    finally:
        await registry.close()


def main():
    """Run the server on stdio for a single local user."""
    logger.info("[Server] Fabits MCP Server running on stdio")
    asyncio.run(_run_stdio())


def main_http():
    """Run the multi-user HTTP server with uvicorn."""
    import argparse
    import uvicorn

    parser = argparse.ArgumentParser(description="Fabits MCP Server (HTTP)")
    parser.add_argument(
        "--host",
        type=str,
        default="0.0.0.0",
        help="Host to bind to (default: 0.0.0.0)"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=3000,
        help="Port to bind to (default: 3000)"
    )
    args = parser.parse_args()

    # Every HTTP caller identifies itself with user_id
    registry.multi_user = True

    logger.info(f"[Server] Starting on {args.host}:{args.port}")
    logger.info(f"[Server] MCP Endpoint: http://{args.host}:{args.port}/mcp/streamable")

    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
