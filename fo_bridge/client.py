from __future__ import annotations

import logging
from typing import Any, Optional, Sequence, Union

import httpx

from .auth import Authenticator
from .config import BackendSettings
from .pagination import Record
from .repository import CustomerRepository, ListOptions, VendorRepository
from .resolver import DualEntityResolver, EntityMatch, Preference
from .transport import ODataTransport, build_http_client

logger = logging.getLogger("fo_bridge.client")


class FOClient:
    """
    Read-only access to customers and vendors of one Finance & Operations
    environment. One instance per connection; it owns the token cache and the
    HTTP connection pool.
    """

    def __init__(
        self,
        authenticator: Authenticator,
        http_client: httpx.AsyncClient,
        max_pages: Optional[int] = None,
    ) -> None:
        self.authenticator = authenticator
        self.http_client = http_client
        self.transport = ODataTransport(http_client, authenticator)
        self.customers = CustomerRepository(self.transport, max_pages=max_pages)
        self.vendors = VendorRepository(self.transport, max_pages=max_pages)
        self.resolver = DualEntityResolver(self.customers, self.vendors)

    @classmethod
    def from_settings(cls, settings: BackendSettings) -> "FOClient":
        authenticator = Authenticator.for_client_secret(
            tenant_id=settings.tenant_id,
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            base_url=settings.base_url,
            authority_host=settings.authority_host,
            renewal_skew_seconds=settings.token_renewal_skew_seconds,
        )
        logger.info(f"Backend client configured for {authenticator.base_url}")
        return cls(authenticator, build_http_client(settings.http_limits), max_pages=settings.max_pages)

    async def list_customers(self, options: Optional[ListOptions] = None) -> Any:
        return await self.customers.list(options)

    async def list_customers_by_name(self, name: str, options: Optional[ListOptions] = None) -> Any:
        return await self.customers.list_by_name(name, options)

    async def get_customer_by_account_identifier(
        self,
        account_id: str,
        select: Optional[Sequence[str]] = None,
        cross_company: bool = False,
    ) -> Optional[Record]:
        return await self.customers.get_by_account_identifier(account_id, select=select, cross_company=cross_company)

    async def list_vendors(self, options: Optional[ListOptions] = None) -> Any:
        return await self.vendors.list(options)

    async def list_vendors_by_name(self, name: str, options: Optional[ListOptions] = None) -> Any:
        return await self.vendors.list_by_name(name, options)

    async def get_vendor_by_account_identifier(
        self,
        account_id: str,
        select: Optional[Sequence[str]] = None,
        cross_company: bool = False,
    ) -> Optional[Record]:
        return await self.vendors.get_by_account_identifier(account_id, select=select, cross_company=cross_company)

    async def resolve_entity_by_identifier(
        self,
        account_id: str,
        preference: Union[str, Preference, None] = Preference.CUSTOMER_FIRST,
        select: Optional[Sequence[str]] = None,
        cross_company: bool = False,
    ) -> EntityMatch:
        return await self.resolver.resolve(account_id, preference, select=select, cross_company=cross_company)

    async def aclose(self) -> None:
        await self.http_client.aclose()
        await self.authenticator.close()

    async def __aenter__(self) -> "FOClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
