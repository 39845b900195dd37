"""Test helper functions."""

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

DAY0 = datetime(2024, 12, 1, tzinfo=timezone.utc)


def day(n: float) -> datetime:
    """Point in time ``n`` days after DAY0."""
    return DAY0 + timedelta(days=n)


def create_request(
    query: Dict[str, Any],
    body: Optional[Dict[str, Any]] = None,
    user_id: Optional[str] = "U123456",
    method: str = "POST",
) -> Dict[str, Any]:
    """Create a serverless request object for testing."""
    headers = {"content-type": "application/json"}
    if user_id:
        headers["X-User-Id"] = user_id

    return {
        "method": method,
        "path": "/api",
        "headers": headers,
        "body": json.dumps(body) if body is not None else "",
        "query": query,
    }
