"""
Decides whether a bare account identifier names a customer, a vendor, or both.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Union

from .pagination import Record
from .repository import CustomerRepository, EntityRepository, VendorRepository

logger = logging.getLogger("fo_bridge.resolver")


class Preference(str, Enum):
    CUSTOMER_FIRST = "customer"
    VENDOR_FIRST = "vendor"
    PARALLEL = "parallel"

    @classmethod
    def parse(cls, value: Union[str, "Preference", None]) -> "Preference":
        if isinstance(value, Preference):
            return value
        raw = (value or "auto").strip().lower()
        aliases = {
            "auto": cls.CUSTOMER_FIRST,
            "customer": cls.CUSTOMER_FIRST,
            "customer-first": cls.CUSTOMER_FIRST,
            "vendor": cls.VENDOR_FIRST,
            "vendor-first": cls.VENDOR_FIRST,
            "parallel": cls.PARALLEL,
            "both": cls.PARALLEL,
        }
        if raw not in aliases:
            raise ValueError(f"Unknown preference '{value}'. Use customer, vendor, auto or parallel.")
        return aliases[raw]


@dataclass(frozen=True)
class CustomerMatch:
    record: Record
    kind = "customer"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind, "record": self.record}


@dataclass(frozen=True)
class VendorMatch:
    record: Record
    kind = "vendor"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind, "record": self.record}


@dataclass(frozen=True)
class BothMatch:
    customer: Record
    vendor: Record
    kind = "both"

    def to_dict(self) -> Dict[str, Any]:
        return {"customer": self.customer, "vendor": self.vendor}


@dataclass(frozen=True)
class NotFound:
    kind = "not_found"

    def to_dict(self) -> Optional[Dict[str, Any]]:
        return None


EntityMatch = Union[CustomerMatch, VendorMatch, BothMatch, NotFound]


def _tag(repository: EntityRepository, record: Record) -> EntityMatch:
    if isinstance(repository, VendorRepository):
        return VendorMatch(record)
    return CustomerMatch(record)


class DualEntityResolver:
    def __init__(self, customers: CustomerRepository, vendors: VendorRepository) -> None:
        self.customers = customers
        self.vendors = vendors

    async def _lookup(
        self,
        repository: EntityRepository,
        account_id: str,
        select: Optional[Sequence[str]],
        cross_company: bool,
    ) -> Optional[Record]:
        """A failed lookup counts as no match so the other kind still gets a chance."""
        try:
            return await repository.get_by_account_identifier(account_id, select=select, cross_company=cross_company)
        except Exception as exc:
            logger.warning(
                f"{repository.kind} lookup for {account_id} failed, treating as not found: {exc}",
                extra={"entity": repository.kind, "status": "lookup_failed"},
            )
            return None

    async def resolve(
        self,
        account_id: str,
        preference: Union[str, Preference, None] = Preference.CUSTOMER_FIRST,
        select: Optional[Sequence[str]] = None,
        cross_company: bool = False,
    ) -> EntityMatch:
        preference = Preference.parse(preference)
        if preference is Preference.PARALLEL:
            return await self._resolve_parallel(account_id, select, cross_company)

        order = (self.customers, self.vendors)
        if preference is Preference.VENDOR_FIRST:
            order = (self.vendors, self.customers)

        for repository in order:
            record = await self._lookup(repository, account_id, select, cross_company)
            if record is not None:
                return _tag(repository, record)
        return NotFound()

    async def _resolve_parallel(
        self,
        account_id: str,
        select: Optional[Sequence[str]],
        cross_company: bool,
    ) -> EntityMatch:
        customer, vendor = await asyncio.gather(
            self._lookup(self.customers, account_id, select, cross_company),
            self._lookup(self.vendors, account_id, select, cross_company),
        )
        if customer is not None and vendor is not None:
            return BothMatch(customer=customer, vendor=vendor)
        if customer is not None:
            return CustomerMatch(customer)
        if vendor is not None:
            return VendorMatch(vendor)
        return NotFound()
