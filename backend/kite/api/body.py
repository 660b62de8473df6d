import json
from typing import Any, Dict

import yaml
from fastapi import Request

from kite.exceptions import BadRequestError

YAML_CONTENT_TYPES = ("application/yaml", "application/x-yaml", "text/yaml", "text/x-yaml")


def _parse_yaml(text: str) -> Any:
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise BadRequestError(f"Invalid YAML: {exc}") from exc


async def read_manifest(request: Request) -> Dict[str, Any]:
    """Read a resource manifest from a JSON or YAML request body.

    A JSON body of the form ``{"yaml": "<text>"}`` is unwrapped as well.
    """
    raw = await request.body()
    if not raw.strip():
        raise BadRequestError("Invalid request body: body is empty")

    content_type = request.headers.get("content-type", "").split(";")[0].strip().lower()
    if content_type in YAML_CONTENT_TYPES:
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise BadRequestError(f"Invalid request body: {exc}") from exc
        data = _parse_yaml(text)
    else:
        try:
            data = json.loads(raw)
        except ValueError as exc:
            raise BadRequestError(f"Invalid request body: {exc}") from exc
        if isinstance(data, dict) and set(data) == {"yaml"} and isinstance(data["yaml"], str):
            data = _parse_yaml(data["yaml"])

    if not isinstance(data, dict):
        raise BadRequestError("Invalid request body: expected a JSON or YAML object")
    return data
