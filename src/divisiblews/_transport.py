"""HTTP transport delivering batch envelopes to peer endpoints."""

from __future__ import annotations

import logging
from typing import Protocol

import aiohttp

from divisiblews.config import DwsConfig
from divisiblews.exceptions import DwsTransportError
from divisiblews.models import DeviceDescriptor

_logger = logging.getLogger(__name__)


class PeerTransport(Protocol):
    """Structural transport interface used by the messenger.

    Having a protocol here makes it easy to pass test doubles while
    keeping the production implementation (`HttpPeerTransport`) concrete.
    """

    async def post_batch(self, peer: DeviceDescriptor, body: str) -> None:
        ...


class HttpPeerTransport:
    """POSTs envelopes to ``{scheme}://{peer.netloc}{endpoint_path}`` with Basic auth."""

    def __init__(
        self,
        config: DwsConfig,
        http_session: aiohttp.ClientSession,
    ) -> None:
        self._config = config
        self._http = http_session
        self._auth = config.credential.basic_auth()
        self._timeout = aiohttp.ClientTimeout(total=config.request_timeout)

    def url_for(self, peer: DeviceDescriptor) -> str:
        return f"{self._config.scheme}://{peer.netloc}{self._config.endpoint_path}"

    async def post_batch(self, peer: DeviceDescriptor, body: str) -> None:
        """Send one batch; raises :class:`DwsTransportError` on any failure."""
        url = self.url_for(peer)
        headers = {"content-type": "text/xml"}
        ssl = not self._config.allow_insecure_https

        _logger.debug("POST %s (%d bytes)", url, len(body))

        try:
            async with self._http.post(
                url,
                data=body.encode("utf-8"),
                headers=headers,
                auth=self._auth,
                timeout=self._timeout,
                ssl=ssl,
            ) as resp:
                text = await resp.text()
                if resp.status == 401:
                    raise DwsTransportError(
                        f"Peer {peer.role} rejected credentials",
                        status_code=resp.status,
                        peer=peer.ip,
                    )
                if not 200 <= resp.status < 300:
                    raise DwsTransportError(
                        f"HTTP {resp.status} from {peer.role}: {text[:200]}",
                        status_code=resp.status,
                        peer=peer.ip,
                    )
        except DwsTransportError:
            raise
        except TimeoutError as exc:
            raise DwsTransportError(
                f"Request to {peer.role} timed out after {self._config.request_timeout}s",
                peer=peer.ip,
            ) from exc
        except aiohttp.ClientError as exc:
            raise DwsTransportError(
                f"Request to {peer.role} failed: {exc}",
                peer=peer.ip,
            ) from exc
