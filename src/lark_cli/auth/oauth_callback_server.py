"""
OAuth Callback Server for the lark CLI.

Starts a minimal HTTP server on localhost for the authorization-code redirect
of ``auth user login``. The server runs in a background thread and hands the
received code back to the login flow.
"""

import asyncio
import html
import logging
import socket
import threading
import time
import webbrowser
from typing import Callable, Optional, Tuple

import click
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse

from ..utils.errors import LarkCLIError
from .oauth_config import OAuthConfig, get_oauth_config

logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "Login complete. You can close this window."


def _create_page(title: str, body: str, color: str) -> str:
    return f"""
    <!DOCTYPE html>
    <html>
    <head>
        <title>{title}</title>
        <style>
            body {{
                font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
                display: flex;
                justify-content: center;
                align-items: center;
                min-height: 100vh;
                margin: 0;
                background: {color};
            }}
            .container {{
                background: white;
                padding: 40px;
                border-radius: 12px;
                text-align: center;
                max-width: 420px;
            }}
        </style>
    </head>
    <body>
        <div class="container">
            <h1>{title}</h1>
            <p>{body}</p>
        </div>
    </body>
    </html>
    """


def _create_success_html() -> str:
    return _create_page("Login complete", SUCCESS_MESSAGE, "#3370ff")


def _create_error_html(error_message: str) -> str:
    return _create_page(
        "Login failed", f"Login failed: {html.escape(error_message)}", "#f54a45"
    )


class OAuthCallbackServer:
    """
    Minimal HTTP server receiving one OAuth authorization-code redirect.
    """

    def __init__(
        self,
        expected_state: str,
        host: str = "localhost",
        port: int = 17653,
        callback_path: str = "/oauth/callback",
    ) -> None:
        self.expected_state = expected_state
        self.host = host
        self.port = port
        self.callback_path = callback_path
        self.app = FastAPI()
        self.server: Optional[uvicorn.Server] = None
        self.server_thread: Optional[threading.Thread] = None
        self.is_running = False

        self.code: Optional[str] = None
        self.error: Optional[str] = None
        self._done = threading.Event()

        self._setup_callback_route()

    def _finish(self, code: Optional[str] = None, error: Optional[str] = None) -> None:
        if self._done.is_set():
            return
        self.code = code
        self.error = error
        self._done.set()

    def _setup_callback_route(self) -> None:
        """Setup the OAuth callback route."""

        @self.app.get(self.callback_path)
        async def oauth_callback(request: Request) -> HTMLResponse:
            """Handle the authorization redirect from Lark."""
            state = request.query_params.get("state")
            code = request.query_params.get("code")
            error = request.query_params.get("error")

            if state != self.expected_state:
                error_message = "state mismatch"
                logger.error(f"OAuth callback rejected: {error_message}")
                self._finish(error=error_message)
                return HTMLResponse(content=_create_error_html(error_message), status_code=400)

            if error:
                description = request.query_params.get("error_description")
                error_message = f"{error}: {description}" if description else error
                logger.error(f"OAuth callback returned an error: {error_message}")
                self._finish(error=error_message)
                return HTMLResponse(content=_create_error_html(error_message), status_code=400)

            if not code:
                error_message = "missing authorization code"
                logger.error(f"OAuth callback rejected: {error_message}")
                self._finish(error=error_message)
                return HTMLResponse(content=_create_error_html(error_message), status_code=400)

            logger.info("OAuth callback: received authorization code")
            self._finish(code=code)
            return HTMLResponse(content=_create_success_html())

    def start(self) -> Tuple[bool, str]:
        """
        Start the callback server.

        Returns:
            Tuple of (success: bool, error_message: str)
        """
        if self.is_running:
            return True, ""

        # Check if port is available
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
                s.bind((self.host, self.port))
        except OSError:
            error_msg = f"Port {self.port} is already in use"
            logger.error(error_msg)
            return False, error_msg

        def run_server() -> None:
            """Run the server in a separate thread."""
            try:
                config = uvicorn.Config(
                    self.app,
                    host=self.host,
                    port=self.port,
                    log_level="warning",
                    access_log=False,
                )
                self.server = uvicorn.Server(config)
                asyncio.run(self.server.serve())
            except Exception as e:
                logger.error(f"OAuth callback server error: {e}", exc_info=True)
                self.is_running = False

        self.server_thread = threading.Thread(target=run_server, daemon=True)
        self.server_thread.start()

        # Wait for server to start
        max_wait = 3.0
        start_time = time.time()
        while time.time() - start_time < max_wait:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
                if s.connect_ex((self.host, self.port)) == 0:
                    self.is_running = True
                    logger.info(f"OAuth callback server started on {self.host}:{self.port}")
                    return True, ""
            time.sleep(0.1)

        error_msg = f"Failed to start OAuth callback server on {self.host}:{self.port}"
        logger.error(error_msg)
        return False, error_msg

    def wait_for_code(self, timeout: float) -> str:
        """
        Block until the redirect arrives.

        Raises:
            LarkCLIError: On timeout or when the redirect carried an error.
        """
        if not self._done.wait(timeout):
            raise LarkCLIError(f"timed out after {int(timeout)}s waiting for OAuth callback")
        if self.error:
            raise LarkCLIError(f"Login failed: {self.error}")
        return self.code or ""

    def stop(self) -> None:
        """Stop the callback server."""
        if not self.is_running:
            return

        if self.server is not None:
            self.server.should_exit = True
        if self.server_thread and self.server_thread.is_alive():
            self.server_thread.join(timeout=3.0)

        self.is_running = False
        logger.info("OAuth callback server stopped")


def receive_authorization_code(
    auth_url: str,
    expected_state: str,
    open_browser: bool = True,
    timeout: Optional[float] = None,
    oauth_config: Optional[OAuthConfig] = None,
    echo: Callable[[str], None] = click.echo,
) -> str:
    """
    Run the browser leg of the login and return the authorization code.

    Args:
        auth_url: Authorization URL to visit.
        expected_state: OAuth state the redirect must carry.
        open_browser: Open the URL in the default browser.
        timeout: Seconds to wait for the redirect.
        oauth_config: Listener configuration.
        echo: Where user-facing instructions are written.

    Returns:
        Authorization code.

    Raises:
        LarkCLIError: If the server cannot start, the wait times out or the
            redirect reports an error.
    """
    config = oauth_config or get_oauth_config()
    server = OAuthCallbackServer(
        expected_state, host=config.host, port=config.port, callback_path=config.callback_path
    )
    success, error_msg = server.start()
    if not success:
        raise LarkCLIError(f"OAuth callback server unavailable: {error_msg}")

    try:
        echo("Open this URL in your browser to authorize:")
        echo(auth_url)
        if open_browser and not webbrowser.open(auth_url):
            logger.warning("Could not open a browser; open the URL manually")
        return server.wait_for_code(timeout or config.login_timeout)
    finally:
        server.stop()
