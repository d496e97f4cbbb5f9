from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence, Tuple
from urllib.parse import quote

# Characters encodeURIComponent leaves alone
_UNRESERVED = "-_.!~*'()"


def encode_component(value: str) -> str:
    return quote(str(value), safe=_UNRESERVED)


def escape_literal(value: str) -> str:
    """Double embedded single quotes for use inside an OData string literal."""
    return str(value).replace("'", "''")


@dataclass(frozen=True)
class QueryOptions:
    filter: Optional[str] = None
    select: Tuple[str, ...] = ()
    top: Optional[int] = None
    orderby: Optional[str] = None
    extra: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def of(
        cls,
        filter: Optional[str] = None,
        select: Optional[Sequence[str]] = None,
        top: Optional[int] = None,
        orderby: Optional[str] = None,
        extra: Optional[Mapping[str, str]] = None,
    ) -> "QueryOptions":
        return cls(
            filter=filter,
            select=tuple(select or ()),
            top=top,
            orderby=orderby,
            extra=dict(extra or {}),
        )


def build_query(options: Optional[QueryOptions] = None) -> str:
    """
    Compose the query string (no leading "?").

    Clause order is fixed: $filter, $select, $top, $orderby, then extra
    parameters in the order given. Values are percent-encoded one clause at a
    time; extra keys are used verbatim.
    """
    if options is None:
        return ""
    parts = []
    if options.filter:
        parts.append(f"$filter={encode_component(options.filter)}")
    if options.select:
        parts.append(f"$select={encode_component(','.join(options.select))}")
    if options.top is not None and options.top > 0:
        parts.append(f"$top={int(options.top)}")
    if options.orderby:
        parts.append(f"$orderby={encode_component(options.orderby)}")
    for key, value in options.extra.items():
        parts.append(f"{key}={encode_component(value)}")
    return "&".join(parts)
