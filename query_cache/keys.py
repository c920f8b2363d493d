"""
Query key serialization and matching.
"""

import json
from typing import Any, List, Tuple

from .shared.errors import InvalidQueryKeyError


def _normalize(value: Any) -> Any:
    # Integral floats hash like ints so hashing agrees with deep_includes.
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, dict):
        return {key: _normalize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize(item) for item in value]
    return value


def serialize_query_key(query_key: Any) -> Tuple[str, List[Any]]:
    """Turn a query key into ``(query_hash, canonical_key)``.

    Scalar keys are wrapped in a single-element list. Mapping keys are sorted
    so two structurally equal keys hash the same regardless of insertion
    order; list order stays significant. ``1.0`` and ``1`` are the same key
    part.
    """
    array_key = _normalize(list(query_key) if isinstance(query_key, (list, tuple)) else [query_key])

    try:
        query_hash = json.dumps(array_key, sort_keys=True, separators=(",", ":"), allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise InvalidQueryKeyError(details={"query_key": repr(query_key), "reason": str(exc)}) from exc

    return query_hash, json.loads(query_hash)


def deep_includes(candidate: Any, target: Any) -> bool:
    """Check that every part of ``target`` is present and equal in ``candidate``."""
    if isinstance(target, dict):
        if not isinstance(candidate, dict):
            return False
        return all(key in candidate and deep_includes(candidate[key], value) for key, value in target.items())

    if isinstance(target, list):
        if not isinstance(candidate, list) or len(target) > len(candidate):
            return False
        return all(deep_includes(candidate[index], value) for index, value in enumerate(target))

    if isinstance(candidate, bool) != isinstance(target, bool):
        return False

    return candidate == target


def match_serialized(candidate_hash: str, candidate_key: List[Any],
                     target_hash: str, target_key: List[Any], exact: bool = False) -> bool:
    """Match already serialized keys."""
    if exact:
        return candidate_hash == target_hash
    return deep_includes(candidate_key, target_key)


def match_query_key(candidate_key: Any, target_key: Any, exact: bool = False) -> bool:
    """Match a candidate query key against a target key or key prefix."""
    candidate_hash, candidate = serialize_query_key(candidate_key)
    target_hash, target = serialize_query_key(target_key)
    return match_serialized(candidate_hash, candidate, target_hash, target, exact=exact)
