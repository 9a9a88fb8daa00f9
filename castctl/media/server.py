"""
Local Media Server.

HTTP server that exposes local files to cast receivers, which fetch media
themselves and cannot read the sender's filesystem.
"""

import logging
import mimetypes
import socket
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional
from urllib.parse import quote

from aiohttp import web

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass
class RegisteredFile:
    """A file registered with the media server."""

    token: str
    path: Path
    content_type: str

    @property
    def filename(self) -> str:
        return self.path.name


def guess_content_type(path: Path) -> str:
    """Guess a MIME type from the file suffix."""
    content_type, _ = mimetypes.guess_type(path.name)
    return content_type or DEFAULT_CONTENT_TYPE


class MediaServer:
    """
    Local HTTP server for casting files.

    Range requests are answered by aiohttp's FileResponse, so receivers can
    seek without downloading the whole file.

    Usage:
        server = MediaServer(host="0.0.0.0", port=8090)
        await server.start()

        url = server.register_file(Path("song.flac"))
        # url = "http://192.168.1.100:8090/media/3f2a9c1d0b7e/song.flac"

        # Pass url to CastClient.load_media
    """

    def __init__(self, host: str = "0.0.0.0", port: int = 8090):
        """
        Initialize media server.

        Args:
            host: Host to bind to
            port: Port to listen on (0 picks a free port)
        """
        self._host = host
        self._port = port

        self._files: Dict[str, RegisteredFile] = {}
        self._app: Optional[web.Application] = None
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None

    @property
    def port(self) -> int:
        return self._port

    @property
    def base_url(self) -> str:
        """Get the base URL receivers should use."""
        host = self._host
        # Use actual IP if bound to all interfaces
        if host in ("0.0.0.0", ""):
            host = self._get_local_ip()
        return f"http://{host}:{self._port}"

    @property
    def is_running(self) -> bool:
        """Check if the server is running."""
        return self._site is not None

    async def start(self) -> None:
        """Start the media server. No-op if already running."""
        if self.is_running:
            return

        self._app = web.Application()
        self._app.router.add_get("/media/{token}/{filename}", self._handle_media)

        self._runner = web.AppRunner(self._app)
        await self._runner.setup()

        self._site = web.TCPSite(self._runner, self._host, self._port)
        await self._site.start()

        if self._port == 0 and self._runner.addresses:
            self._port = self._runner.addresses[0][1]

        logger.info(f"Media server started on {self._host}:{self._port}")

    async def stop(self) -> None:
        """Stop the media server. Safe when not running."""
        if not self._runner:
            return

        if self._site:
            await self._site.stop()
            self._site = None
        await self._runner.cleanup()
        self._runner = None

        self._files.clear()
        logger.info("Media server stopped")

    def register_file(self, path: Path, content_type: Optional[str] = None) -> str:
        """
        Register a local file for serving.

        Args:
            path: File to serve
            content_type: MIME type (guessed from the suffix if omitted)

        Returns:
            URL the receiver should load

        Raises:
            FileNotFoundError: If path is not a file
        """
        path = Path(path).expanduser().resolve()
        if not path.is_file():
            raise FileNotFoundError(f"Not a file: {path}")

        token = uuid.uuid4().hex[:12]
        registered = RegisteredFile(
            token=token,
            path=path,
            content_type=content_type or guess_content_type(path),
        )
        self._files[token] = registered

        url = f"{self.base_url}/media/{token}/{quote(registered.filename)}"
        logger.debug(f"Registered {path} -> {url}")
        return url

    def unregister_file(self, token: str) -> None:
        """Remove a file from the registry."""
        if self._files.pop(token, None):
            logger.debug(f"Unregistered file {token}")

    def get_file(self, token: str) -> Optional[RegisteredFile]:
        return self._files.get(token)

    async def _handle_media(self, request: web.Request) -> web.StreamResponse:
        """Serve a registered file to a receiver."""
        token = request.match_info["token"]

        registered = self._files.get(token)
        if not registered:
            logger.warning(f"Unknown media requested: {token}")
            return web.Response(status=404, text="Media not found")

        if not registered.path.is_file():
            logger.warning(f"Registered file disappeared: {registered.path}")
            return web.Response(status=404, text="Media not found")

        logger.debug(
            f"Serving {registered.filename} to {request.remote} "
            f"(Range: {request.headers.get('Range', 'none')})"
        )
        return web.FileResponse(
            registered.path,
            headers={
                "Content-Type": registered.content_type,
                "Access-Control-Allow-Origin": "*",
            },
        )

    def _get_local_ip(self) -> str:
        """Get local IP address for media URLs."""
        try:
            # Doesn't actually connect, just determines route
            s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            try:
                s.connect(("8.8.8.8", 80))
                ip = s.getsockname()[0]
            finally:
                s.close()
            return str(ip)
        except OSError:
            return "127.0.0.1"
