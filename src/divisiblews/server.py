"""Inbound endpoint: receives batch envelopes from peers."""

from __future__ import annotations

import logging
import ssl

from aiohttp import BasicAuth, hdrs, web

from divisiblews._envelope import parse_envelope
from divisiblews._redact import redact_headers
from divisiblews.exceptions import MessageParseError
from divisiblews.messaging import Messenger
from divisiblews.models import Credential

_logger = logging.getLogger(__name__)

_OK_BODY = "<Command><Status>OK</Status></Command>"


class InboundServer:
    """aiohttp application accepting ``POST {path}`` batches.

    Each accepted batch is dispatched payload by payload, in document
    order, before the response is sent.
    """

    def __init__(
        self,
        messenger: Messenger,
        credential: Credential,
        *,
        path: str = "/putxml",
        ssl_context: ssl.SSLContext | None = None,
    ) -> None:
        self._messenger = messenger
        self._credential = credential
        self._path = path
        self._ssl_context = ssl_context
        self._runner: web.AppRunner | None = None

    @property
    def running(self) -> bool:
        return self._runner is not None

    @property
    def port(self) -> int | None:
        """Port actually bound (useful when started on port 0)."""
        if self._runner is None or not self._runner.addresses:
            return None
        return int(self._runner.addresses[0][1])

    def make_app(self) -> web.Application:
        app = web.Application()
        app.add_routes([web.post(self._path, self._handle_batch)])
        return app

    async def start(self, host: str = "0.0.0.0", port: int = 8443) -> None:
        if self._runner is not None:
            return
        runner = web.AppRunner(self.make_app(), access_log=None)
        await runner.setup()
        site = web.TCPSite(runner, host=host, port=port, ssl_context=self._ssl_context)
        try:
            await site.start()
        except OSError:
            await runner.cleanup()
            raise
        self._runner = runner
        _logger.info("Listening for peer batches on %s:%s%s", host, self.port, self._path)

    async def stop(self) -> None:
        runner, self._runner = self._runner, None
        if runner is None:
            return
        await runner.cleanup()
        _logger.info("Inbound endpoint stopped")

    def _authorized(self, request: web.Request) -> bool:
        header = request.headers.get(hdrs.AUTHORIZATION)
        if not header:
            return False
        try:
            auth = BasicAuth.decode(header)
        except ValueError:
            return False
        return self._credential.matches(auth)

    async def _handle_batch(self, request: web.Request) -> web.Response:
        if not self._authorized(request):
            _logger.warning("Rejected batch from %s: bad credentials", request.remote)
            _logger.debug("Rejected request headers: %s", redact_headers(request.headers))
            return web.Response(
                status=401,
                text="Unauthorized",
                headers={hdrs.WWW_AUTHENTICATE: 'Basic realm="divisiblews"'},
            )

        body = await request.read()
        try:
            payloads = parse_envelope(body)
        except MessageParseError as exc:
            _logger.debug("Rejected batch from %s: %s", request.remote, exc)
            return web.Response(status=400, text="Malformed envelope")

        _logger.debug("Received %d message(s) from %s", len(payloads), request.remote)
        await self._messenger.dispatch_batch(payloads)
        return web.Response(text=_OK_BODY, content_type="text/xml")
