"""
Interactive part of the Microsoft login: sending the user to the authorize page
and getting the authorization code back.
"""

import asyncio
import logging
import webbrowser
from typing import Optional, Protocol
from urllib.parse import parse_qs, urlparse

import typer
from aiohttp import web

from mclaunch_cli.exceptions import AuthProtocolError, ConsentDeniedError

log = logging.getLogger(__name__)

LOOPBACK_HOSTS = ("127.0.0.1", "::1")

_DONE_PAGE = "<html><body><h3>{message}</h3><p>You can close this window.</p></body></html>"


class CodeReceiver(Protocol):
    async def receive(self, authorize_url: str, state: str) -> str:
        """Sends the user to ``authorize_url`` and returns the authorization code."""
        ...


def parse_redirect(query: dict[str, str], expected_state: str) -> str:
    """
    Extracts the authorization code from redirect query parameters.

    Raises:
        ConsentDeniedError: The user declined the authorization request.
        AuthProtocolError: Any other error, a state mismatch, or no code at all.
    """
    if error := query.get("error"):
        description = query.get("error_description", "No description provided.")
        if error == "access_denied":
            raise ConsentDeniedError(f"Authorization was declined: {description}")
        raise AuthProtocolError(f"OAuth error: {error} - {description}")
    if query.get("state") is not None and query.get("state") != expected_state:
        raise AuthProtocolError("OAuth state mismatch in redirect.")
    code = query.get("code", "").strip()
    if not code:
        raise AuthProtocolError("Redirect did not contain an authorization code.")
    return code


class LocalRedirectReceiver:
    """
    Opens the browser and listens on ``localhost:<port>`` for the single
    redirect that carries the code. Both loopback addresses are bound since
    browsers may resolve ``localhost`` to either.
    """

    def __init__(self, port: int = 8080, open_browser: bool = True, timeout: float = 300):
        self.port = port
        self.open_browser = open_browser
        self.timeout = timeout

    async def receive(self, authorize_url: str, state: str) -> str:
        loop = asyncio.get_running_loop()
        result: asyncio.Future[str] = loop.create_future()

        async def handle_redirect(request: web.Request) -> web.Response:
            query = {k: v for k, v in request.query.items()}
            if result.done():
                return web.Response(text="Already handled.", status=409)
            try:
                code = parse_redirect(query, state)
            except (ConsentDeniedError, AuthProtocolError) as e:
                result.set_exception(e)
                message = "Authentication failed."
            else:
                result.set_result(code)
                message = "Authentication successful!"
            return web.Response(
                text=_DONE_PAGE.format(message=message), content_type="text/html"
            )

        app = web.Application()
        app.router.add_get("/", handle_redirect)
        runner = web.AppRunner(app)
        await runner.setup()
        try:
            await self._listen(runner)

            if self.open_browser and webbrowser.open(authorize_url):
                log.info("Opened the browser for Microsoft authentication...")
            else:
                log.info(f"Open this URL to sign in:\n[cyan]{authorize_url}[/cyan]")
            log.info("Waiting for the authorization code...")

            try:
                return await asyncio.wait_for(result, timeout=self.timeout)
            except asyncio.TimeoutError as e:
                raise AuthProtocolError(
                    f"No login redirect received within {self.timeout:.0f}s."
                ) from e
        finally:
            await runner.cleanup()

    async def _listen(self, runner: web.AppRunner) -> None:
        ipv4, ipv6 = LOOPBACK_HOSTS
        try:
            await web.TCPSite(runner, ipv4, self.port).start()
        except OSError as e:
            raise AuthProtocolError(
                f"Cannot listen on port {self.port} for the login redirect: {e}"
            ) from e
        try:
            await web.TCPSite(runner, ipv6, self.port).start()
        except OSError as e:
            log.debug(f"IPv6 loopback unavailable for the redirect listener: {e}")
        log.info(f"Local server listening on localhost:{self.port}")


class PromptReceiver:
    """Asks the user to paste the redirect URL (or just the code) into the terminal."""

    def __init__(self, open_browser: bool = True):
        self.open_browser = open_browser

    async def receive(self, authorize_url: str, state: str) -> str:
        if not (self.open_browser and webbrowser.open(authorize_url)):
            typer.echo(f"Open this URL to sign in:\n{authorize_url}")
        answer: Optional[str] = await asyncio.to_thread(
            typer.prompt, "Paste the redirect URL or the code"
        )
        answer = (answer or "").strip()
        if "?" in answer:
            query = {k: v[0] for k, v in parse_qs(urlparse(answer).query).items()}
            return parse_redirect(query, state)
        return parse_redirect({"code": answer}, state)
