"""
Response normalization for the three Mixpanel API families.

- Ingestion answers 1 (accepted), 0 (rejected) or a JSON object
- Query answers plain JSON, sometimes a paginated {"results": [...]} envelope
- Export answers newline-delimited JSON, a JSON array or a single object

Everything ends up as a list of dicts, one per output record.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from .exceptions import ProtocolError


# ============================================================================
# Ingestion results
# ============================================================================


class IngestionResult(ABC):
    """Outcome of one ingestion request"""

    @abstractmethod
    def to_record(self) -> Dict[str, Any]:
        pass


@dataclass(frozen=True)
class Success(IngestionResult):
    """Body was 1"""

    def to_record(self) -> Dict[str, Any]:
        return {"success": True}


@dataclass(frozen=True)
class Failure(IngestionResult):
    """Body was 0"""
    reason: str = "Mixpanel API returned failure status. Check your data format and credentials."

    def to_record(self) -> Dict[str, Any]:
        return {"success": False, "error": self.reason}


@dataclass(frozen=True)
class Payload(IngestionResult):
    """Body was a JSON object (verbose mode, /import)"""
    data: Dict[str, Any] = field(default_factory=dict)

    def to_record(self) -> Dict[str, Any]:
        return dict(self.data)


def classify_ingestion_response(body: Any) -> IngestionResult:
    """
    Turn an ingestion response body into Success, Failure or Payload.

    Raises:
        ProtocolError: If the body is none of 1, 0 or a JSON object
    """
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")

    if isinstance(body, str):
        text = body.strip()
        if text == "1":
            return Success()
        if text == "0":
            return Failure()
        try:
            body = json.loads(text)
        except json.JSONDecodeError:
            raise ProtocolError(
                "Ingestion API returned an unrecognized response",
                details={"body": text[:500]}
            )

    if isinstance(body, bool):
        raise ProtocolError(
            "Ingestion API returned an unrecognized response",
            details={"body": body}
        )
    if body == 1:
        return Success()
    if body == 0:
        return Failure()
    if isinstance(body, dict):
        return Payload(data=body)

    raise ProtocolError(
        "Ingestion API returned an unrecognized response",
        details={"body": str(body)[:500]}
    )


# ============================================================================
# Export bodies
# ============================================================================


def parse_export_body(body: Any) -> List[Any]:
    """
    Decode an export response.

    A string holding one JSON array or object is decoded as a whole: an
    array passes through, an object becomes one record. Any other string
    is read as newline-delimited JSON with blank lines skipped, and a line
    that fails to parse fails the whole export.

    Example:
        >>> parse_export_body('{"a":1}\\n{"b":2}\\n\\n')
        [{'a': 1}, {'b': 2}]
        >>> parse_export_body('[{"a": 1}, {"b": 2}]')
        [{'a': 1}, {'b': 2}]
    """
    if isinstance(body, bytes):
        body = body.decode("utf-8")

    if isinstance(body, str):
        try:
            whole = json.loads(body)
        except json.JSONDecodeError:
            whole = None
        if isinstance(whole, (list, dict)):
            return parse_export_body(whole)

        records = []
        for line_number, line in enumerate(body.split("\n"), start=1):
            if not line.strip():
                continue
            try:
                records.append(json.loads(line))
            except json.JSONDecodeError as e:
                raise ProtocolError(
                    f"Export API returned invalid JSON on line {line_number}: {e.msg}",
                    details={"line_number": line_number, "line": line[:500]}
                )
        return records

    if isinstance(body, list):
        return body

    return [body]


# ============================================================================
# Output records
# ============================================================================


def wrap_response(
    data: Union[Dict[str, Any], List[Any]],
    metadata: Optional[Dict[str, Any]] = None,
) -> List[Dict[str, Any]]:
    """
    Produce one output record per result, each merged with metadata.

    Non-dict entries are placed under a "value" key.
    """
    metadata = metadata or {}
    items = data if isinstance(data, list) else [data]

    records = []
    for item in items:
        if isinstance(item, dict):
            records.append({**item, **metadata})
        else:
            records.append({"value": item, **metadata})
    return records


def normalize_paginated(response: Any) -> List[Dict[str, Any]]:
    """
    Flatten a paginated {"results": [...]} response.

    Each result carries `_metadata` with the page, session_id and total of
    the envelope. Other responses become a single record.
    """
    if isinstance(response, dict) and isinstance(response.get("results"), list):
        page_info = {
            "page": response.get("page"),
            "session_id": response.get("session_id"),
            "total": response.get("total"),
        }
        return [
            {**item, "_metadata": dict(page_info)} if isinstance(item, dict)
            else {"value": item, "_metadata": dict(page_info)}
            for item in response["results"]
        ]
    return wrap_response(response)
