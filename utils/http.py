import json

from fastapi import Request

from core.errors import InvalidRequest


async def read_json(request: Request) -> dict:
    """Parse the request body as a JSON object; an empty body reads as {}."""
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        payload = json.loads(raw)
    except ValueError:
        raise InvalidRequest("Invalid JSON body")
    if not isinstance(payload, dict):
        raise InvalidRequest("JSON body must be an object")
    return payload
