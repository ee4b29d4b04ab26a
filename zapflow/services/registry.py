"""
Tenant Registry - maps tenants to their WhatsApp transport and webhook token
"""
import logging
from typing import Optional, Dict, List, TYPE_CHECKING

from ..models.channel import ChannelConfig
from .transport import MessagingTransport, UazapiTransport

if TYPE_CHECKING:
    from .store import FlowStore

logger = logging.getLogger(__name__)


class TenantRegistry:
    """
    Explicit tenant lookup built by the application at startup.

    `load()` reads the configured channels from the store and creates one
    UAZAPI transport per tenant; `close()` releases them.
    """

    def __init__(self):
        self._transports: Dict[str, MessagingTransport] = {}
        self._tokens: Dict[str, str] = {}

    async def load(self, store: "FlowStore") -> int:
        """
        Register every active channel.

        Returns:
            Number of tenants registered
        """
        channels: List[ChannelConfig] = await store.list_channels()
        for channel in channels:
            transport = UazapiTransport(token=channel.instance_token, base_url=channel.server_url)
            self.register(channel.tenant_id, transport, token=channel.instance_token)

        logger.info(f"Tenant registry loaded {len(channels)} channel(s)")
        return len(channels)

    def register(
        self,
        tenant_id: str,
        transport: MessagingTransport,
        token: Optional[str] = None
    ) -> None:
        self._transports[tenant_id] = transport
        if token:
            self._tokens[token] = tenant_id
        logger.debug(f"Registered tenant {tenant_id}")

    def tenant_for_token(self, token: Optional[str]) -> Optional[str]:
        """Tenant owning the UAZAPI instance token sent with a webhook"""
        if not token:
            return None
        return self._tokens.get(token)

    def transport_for(self, tenant_id: str) -> MessagingTransport:
        """
        Raises:
            KeyError: tenant has no registered channel
        """
        transport = self._transports.get(tenant_id)
        if transport is None:
            raise KeyError(f"No messaging channel registered for tenant {tenant_id}")
        return transport

    def __contains__(self, tenant_id: str) -> bool:
        return tenant_id in self._transports

    @property
    def tenants(self) -> List[str]:
        return list(self._transports)

    async def close(self) -> None:
        for tenant_id, transport in self._transports.items():
            try:
                await transport.close()
            except Exception as e:
                logger.warning(f"Error closing transport for tenant {tenant_id}: {e}")
        self._transports.clear()
        self._tokens.clear()
