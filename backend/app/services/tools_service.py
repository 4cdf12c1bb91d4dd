import json
import logging
from typing import Callable, Iterable, Mapping, Optional

from google.genai import types

from app.exceptions import UnknownCapability
from app.models.stream import ToolCallRequest, ToolResult

logger = logging.getLogger(__name__)

ToolExecutor = Callable[[dict], str]

# ── Tool Declarations ──────────────────────────────────────────────────────────

TOOL_DECLARATIONS = [
    types.FunctionDeclaration(
        name="search_properties",
        description="Search property listings for rent or sale. Returns matching listings with city, neighbourhood, monthly rent or sale price, currency, and bedroom count.",
        parameters=types.Schema(
            type="OBJECT",
            properties={
                "city": types.Schema(type="STRING", description="City to search in, e.g. 'Tokyo'"),
                "listing_type": types.Schema(type="STRING", description="'rent' or 'sale'. Defaults to 'rent'."),
                "max_price": types.Schema(type="NUMBER", description="Maximum monthly rent (for rentals) or sale price, in the listing's local currency"),
                "min_bedrooms": types.Schema(type="INTEGER", description="Minimum number of bedrooms"),
                "limit": types.Schema(type="INTEGER", description="Maximum number of results to return (default 5)"),
            },
            required=["city"],
        ),
    ),
]


# ── Capabilities ───────────────────────────────────────────────────────────────

# Fixed sample catalogue; stands in for a real listing search.
_SAMPLE_LISTINGS = [
    {"id": "tk-001", "city": "Tokyo", "area": "Nakano", "listing_type": "rent", "price": 92000, "currency": "JPY", "bedrooms": 1},
    {"id": "tk-002", "city": "Tokyo", "area": "Koenji", "listing_type": "rent", "price": 78000, "currency": "JPY", "bedrooms": 0},
    {"id": "tk-003", "city": "Tokyo", "area": "Shibuya", "listing_type": "rent", "price": 165000, "currency": "JPY", "bedrooms": 1},
    {"id": "tk-004", "city": "Tokyo", "area": "Setagaya", "listing_type": "sale", "price": 58000000, "currency": "JPY", "bedrooms": 3},
    {"id": "os-001", "city": "Osaka", "area": "Tennoji", "listing_type": "rent", "price": 70000, "currency": "JPY", "bedrooms": 2},
    {"id": "ny-001", "city": "New York", "area": "Astoria", "listing_type": "rent", "price": 2600, "currency": "USD", "bedrooms": 1},
    {"id": "ny-002", "city": "New York", "area": "Park Slope", "listing_type": "sale", "price": 1250000, "currency": "USD", "bedrooms": 2},
]


def _execute_search_properties(args: dict) -> str:
    city = args.get("city")
    if not city:
        raise ValueError("city is required")

    listing_type = (args.get("listing_type") or "rent").lower()
    listings = [
        p for p in _SAMPLE_LISTINGS
        if p["city"].lower() == city.lower() and p["listing_type"] == listing_type
    ]

    if args.get("max_price") is not None:
        listings = [p for p in listings if p["price"] <= args["max_price"]]

    if args.get("min_bedrooms") is not None:
        listings = [p for p in listings if p["bedrooms"] >= args["min_bedrooms"]]

    listings.sort(key=lambda p: p["price"])

    limit = int(args.get("limit", 5))
    listings = listings[:limit]
    return json.dumps({"count": len(listings), "listings": listings})


_TOOL_EXECUTORS: dict[str, ToolExecutor] = {
    "search_properties": _execute_search_properties,
}


# ── Dispatch ───────────────────────────────────────────────────────────────────

def _error_result(request: ToolCallRequest, code: str, message: str) -> ToolResult:
    return ToolResult(
        tool_call_id=request.id,
        name=request.name,
        arguments=request.arguments,
        content=json.dumps({"error": message}),
        error=code,
    )


def dispatch_tool_calls(
    requests: Iterable[ToolCallRequest],
    executors: Optional[Mapping[str, ToolExecutor]] = None,
) -> list[ToolResult]:
    """
    Run each tool call in order and return one result per call.

    Failures never raise: an unknown function name or an executor exception
    becomes an error result and the remaining calls still run.
    """
    if executors is None:
        executors = _TOOL_EXECUTORS

    results = []
    for request in requests:
        executor = executors.get(request.name)
        if executor is None:
            err = UnknownCapability(f"Unknown tool: {request.name}")
            logger.warning("unknown_capability", extra={"tool": request.name, "tool_call_id": request.id})
            results.append(_error_result(request, err.code, err.message))
            continue

        try:
            content = executor(request.arguments)
        except Exception as e:
            logger.error(
                "tool_execution_failed",
                extra={"tool": request.name, "tool_call_id": request.id, "error": str(e)},
                exc_info=True,
            )
            results.append(_error_result(request, "capability_error", str(e)))
            continue

        logger.info("tool_executed", extra={"tool": request.name, "tool_call_id": request.id})
        results.append(ToolResult(
            tool_call_id=request.id,
            name=request.name,
            arguments=request.arguments,
            content=content,
        ))
    return results
