from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Sequence

from .pagination import AggregatedResult, Record, collect_all
from .query import QueryOptions, build_query, escape_literal
from .transport import ODataTransport

logger = logging.getLogger("fo_bridge.repository")


@dataclass
class ListOptions:
    """Caller-facing options for a list call."""

    filter: Optional[str] = None
    select: Optional[Sequence[str]] = None
    top: Optional[int] = None
    orderby: Optional[str] = None
    cross_company: bool = False
    fetch_all_pages: bool = False
    extra: Dict[str, str] = field(default_factory=dict)

    def to_query_options(self) -> QueryOptions:
        extra = dict(self.extra)
        if self.cross_company:
            extra["cross-company"] = "true"
        return QueryOptions.of(
            filter=self.filter,
            select=self.select,
            top=self.top,
            orderby=self.orderby,
            extra=extra,
        )


def normalize_single_record(payload: Any) -> Optional[Record]:
    """
    Reduce a backend response to one record.

    Bare array and `value` envelope give their first element; any other
    non-empty object is the record itself. Everything else is absent.
    """
    if not payload:
        return None
    if isinstance(payload, AggregatedResult):
        return payload.records[0] if payload.records else None
    if isinstance(payload, list):
        return payload[0] if payload else None
    if isinstance(payload, dict):
        value = payload.get("value")
        if isinstance(value, list):
            return value[0] if value else None
        return payload
    return None


def records_or_payload(payload: Any) -> Any:
    """Records for page-shaped results, otherwise the raw payload."""
    if isinstance(payload, AggregatedResult):
        return payload.records
    if isinstance(payload, dict) and "value" in payload:
        return payload["value"]
    return payload


class EntityRepository:
    entity_set: str = ""
    id_field: str = ""
    name_field: str = ""
    kind: str = ""

    def __init__(self, transport: ODataTransport, max_pages: Optional[int] = None) -> None:
        self.transport = transport
        self.max_pages = max_pages

    @property
    def endpoint(self) -> str:
        return f"data/{self.entity_set}"

    def endpoint_for(self, options: ListOptions) -> str:
        query = build_query(options.to_query_options())
        return f"{self.endpoint}?{query}" if query else self.endpoint

    async def list(self, options: Optional[ListOptions] = None) -> Any:
        """
        Raw payload for a single page, or an AggregatedResult when
        `fetch_all_pages` is set and the payload is page-shaped.
        """
        options = options or ListOptions()
        endpoint = self.endpoint_for(options)
        if not options.fetch_all_pages:
            return await self.transport.request(endpoint, "GET")

        return await collect_all(
            lambda: self.transport.request(endpoint, "GET"),
            lambda link: self.transport.request(link, "GET"),
            max_pages=self.max_pages,
        )

    async def list_by_name(self, name: str, options: Optional[ListOptions] = None) -> Any:
        options = replace(
            options or ListOptions(),
            filter=f"contains({self.name_field},'{escape_literal(name)}')",
        )
        return await self.list(options)

    async def get_by_account_identifier(
        self,
        account_id: str,
        select: Optional[Sequence[str]] = None,
        cross_company: bool = False,
    ) -> Optional[Record]:
        options = ListOptions(
            filter=f"{self.id_field} eq '{escape_literal(account_id)}'",
            select=select,
            top=1,
            cross_company=cross_company,
        )
        payload = await self.list(options)
        record = normalize_single_record(payload)
        if record is None:
            logger.info(f"No {self.kind} found for {self.id_field} = {account_id}", extra={"entity": self.kind})
        return record


class CustomerRepository(EntityRepository):
    entity_set = "CustomersV3"
    id_field = "CustomerAccount"
    name_field = "Name"
    kind = "customer"


class VendorRepository(EntityRepository):
    entity_set = "VendorsV3"
    id_field = "VendorAccountNumber"
    name_field = "VendorOrganizationName"
    kind = "vendor"
