"""
Fake Finance & Operations OData service for local runs and tests.

Serves data/CustomersV3 and data/VendorsV3 with `$top`, `$select`, simple
`<field> eq '<value>'` filters and @odata.nextLink paging.
"""
from __future__ import annotations

import os
import re
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse

PAGE_SIZE = int(os.getenv("DEV_BACKEND_PAGE_SIZE", "2"))

_EQ_FILTER = re.compile(r"^\s*(\w+)\s+eq\s+'((?:[^']|'')*)'\s*$")

ENTITY_SETS: Dict[str, List[Dict[str, Any]]] = {
    "CustomersV3": [
        {"CustomerAccount": "C001", "Name": "Contoso Retail", "dataAreaId": "usmf"},
        {"CustomerAccount": "C002", "Name": "Fabrikam", "dataAreaId": "usmf"},
        {"CustomerAccount": "O'Brien", "Name": "O'Brien Supplies", "dataAreaId": "usmf"},
        {"CustomerAccount": "V100", "Name": "Northwind (customer side)", "dataAreaId": "usmf"},
        {"CustomerAccount": "C005", "Name": "Adventure Works", "dataAreaId": "demf"},
    ],
    "VendorsV3": [
        {"VendorAccountNumber": "V100", "VendorOrganizationName": "Northwind Traders", "dataAreaId": "usmf"},
        {"VendorAccountNumber": "V200", "VendorOrganizationName": "Litware", "dataAreaId": "usmf"},
        {"VendorAccountNumber": "C009", "VendorOrganizationName": "Vendor Only Co", "dataAreaId": "usmf"},
    ],
}

app = FastAPI(title="Dev stub OData backend")


def _apply_filter(rows: List[Dict[str, Any]], expression: Optional[str]) -> List[Dict[str, Any]]:
    if not expression:
        return rows
    match = _EQ_FILTER.match(expression)
    if not match:
        return rows
    field, literal = match.group(1), match.group(2).replace("''", "'")
    return [row for row in rows if str(row.get(field)) == literal]


def _apply_select(rows: List[Dict[str, Any]], select: Optional[str]) -> List[Dict[str, Any]]:
    if not select:
        return rows
    fields = [f for f in select.split(",") if f]
    return [{k: v for k, v in row.items() if k in fields} for row in rows]


@app.get("/login")
async def login_page() -> HTMLResponse:
    """What an unauthorised caller sees: a 200 HTML sign-in page."""
    return HTMLResponse("<!DOCTYPE html><html><body>Sign in</body></html>")


@app.get("/data/{entity_set}")
async def query_entity_set(entity_set: str, request: Request) -> Any:
    rows = ENTITY_SETS.get(entity_set)
    if rows is None:
        return {"error": {"code": "NotFound", "message": f"Entity set {entity_set} not found"}}

    params = request.query_params
    if params.get("cross-company") != "true":
        rows = [row for row in rows if row.get("dataAreaId") == "usmf"]
    rows = _apply_filter(rows, params.get("$filter"))
    top = params.get("$top")
    if top:
        rows = rows[: int(top)]
    rows = _apply_select(rows, params.get("$select"))

    skip = int(params.get("$skip", "0"))
    page = rows[skip : skip + PAGE_SIZE]
    body: Dict[str, Any] = {"@odata.context": f"{request.base_url}data/$metadata#{entity_set}", "value": page}
    if skip + PAGE_SIZE < len(rows):
        next_params = dict(params)
        next_params["$skip"] = str(skip + PAGE_SIZE)
        body["@odata.nextLink"] = str(request.url.replace_query_params(**next_params))
    return body
