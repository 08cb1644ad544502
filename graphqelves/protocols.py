"""
Protocol Parsers.

This module decides whether a captured request body carries GraphQL operations and,
if it does, turns each operation into a normalized payload dict that the event
assembler wraps into a GraphQLPayload record.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

logger = logging.getLogger("graphqelves.protocols")

GRAPHQL_KEYS = ("query", "operationName", "extensions")


def safe_json_parse(text: Optional[str]) -> Any:
    """Parses JSON text, returning None for empty or malformed input."""
    if not text:
        return None
    try:
        return json.loads(text)
    except (ValueError, TypeError):
        return None


def _query_text(candidate: dict) -> str:
    query = candidate.get("query")
    return query.lstrip() if isinstance(query, str) else ""


def _has_persisted_query(candidate: dict) -> bool:
    extensions = candidate.get("extensions")
    if not isinstance(extensions, dict):
        return False
    # Empty objects and lists still count as present
    persisted = extensions.get("persistedQuery")
    return persisted is not None and persisted is not False and persisted not in (0, "")


class GraphQLParser:
    """Classifies and extracts GraphQL operations from captured request bodies.

    Classification walks RULES top to bottom and the first matching predicate wins.
    The introspection check must stay first and the keyword checks must precede the
    permissive fallback.
    """

    RULES = [
        (lambda c: c.get("operationName") == "IntrospectionQuery", "query"),
        (lambda c: _query_text(c).startswith("mutation"), "mutation"),
        (lambda c: _query_text(c).startswith("subscription"), "subscription"),
        (_has_persisted_query, "persisted"),
        (lambda c: _query_text(c).startswith("query"), "query"),
        (lambda c: isinstance(c.get("query"), str), "query"),
    ]

    NAME_PATTERN = re.compile(r"^\s*(?:query|mutation|subscription)\s+([A-Za-z_][A-Za-z0-9_]*)")

    # Narrow on purpose: only a CRLF-delimited `operations` field is recognised.
    MULTIPART_OPERATIONS = re.compile(r'name="operations"\r\n\r\n(.*)\r\n')

    @staticmethod
    def looks_like_graphql(item: Any) -> bool:
        """Returns True if item is a mapping with at least one standard GraphQL key."""
        return isinstance(item, dict) and any(key in item for key in GRAPHQL_KEYS)

    @classmethod
    def classify(cls, candidate: dict) -> str:
        """Determines the operation type of a single candidate payload.

        Args:
            candidate: A decoded JSON object that looks like a GraphQL request.

        Returns:
            One of "query", "mutation", "subscription", "persisted" or "unknown".
        """
        for predicate, operation_type in cls.RULES:
            if predicate(candidate):
                return operation_type
        return "unknown"

    @classmethod
    def resolve_name(cls, candidate: dict) -> Optional[str]:
        """Returns the explicit operationName, else the name declared in the query text."""
        name = candidate.get("operationName")
        if isinstance(name, str) and name:
            return name

        query = candidate.get("query")
        if not isinstance(query, str):
            return None
        match = cls.NAME_PATTERN.match(query)
        return match.group(1) if match else None

    @classmethod
    def to_payload(cls, candidate: dict) -> Dict[str, Any]:
        """Normalizes one candidate into the fields of a GraphQLPayload."""
        query = candidate.get("query")
        variables = candidate.get("variables")
        extensions = candidate.get("extensions")
        return {
            "operation_name": cls.resolve_name(candidate),
            "operation_type": cls.classify(candidate),
            "query": query if isinstance(query, str) and query else None,
            "variables": variables if isinstance(variables, dict) else None,
            "extensions": extensions if isinstance(extensions, dict) else None,
        }

    @classmethod
    def extract(cls, mime_type: Optional[str], text: Optional[str]) -> Optional[List[Dict[str, Any]]]:
        """Extracts every GraphQL operation carried by a request body.

        Arrays are filtered element by element, so analytics events sharing a batch
        endpoint are dropped while real batched operations are kept.

        Args:
            mime_type: The request body's MIME type.
            text: The request body text.

        Returns:
            A list of payload field dicts (its length is the batch size), or None if
            the body carries no GraphQL.
        """
        if not text:
            return None

        mime = (mime_type or "").lower()

        if "application/json" in mime:
            parsed = safe_json_parse(text)
            if parsed is None:
                logger.warning(f"Discarding request body that is not valid JSON ({len(text)} chars)")
                return None

            if isinstance(parsed, list):
                items = [item for item in parsed if cls.looks_like_graphql(item)]
                if not items:
                    logger.debug(f"JSON array of {len(parsed)} items holds no GraphQL operations")
                    return None
                return [cls.to_payload(item) for item in items]

            if cls.looks_like_graphql(parsed):
                return [cls.to_payload(parsed)]
            return None

        if "multipart/form-data" in mime:
            return cls._extract_multipart(text)

        return None

    @classmethod
    def _extract_multipart(cls, text: str) -> Optional[List[Dict[str, Any]]]:
        try:
            match = cls.MULTIPART_OPERATIONS.search(text)
            if not match or not match.group(1):
                logger.warning("Multipart body has no recognisable operations field")
                return None
            parsed = safe_json_parse(match.group(1))
            if cls.looks_like_graphql(parsed):
                return [cls.to_payload(parsed)]
            logger.warning("Multipart operations field is not a GraphQL object")
        except Exception as e:
            logger.warning(f"Failed to parse multipart GraphQL body: {e}")
        return None
