"""Deterministic fingerprints of schedule payloads for change detection."""

import hashlib
import json
from typing import Any


FINGERPRINT_DIGEST_SIZE = 8


def canonical_json(payload: Any) -> str:
    """Serialize a payload to its canonical JSON form.
    
    Object keys are sorted and separators are compact so that two payloads
    with equal content always serialize to the same string, regardless of
    dict insertion order.
    """
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def fingerprint(payload: Any) -> str:
    """Compute the fingerprint of a payload.
    
    This is a change detector, not an integrity check: a 64-bit blake2b
    digest over the canonical serialization, hex encoded.
    
    Args:
        payload: JSON-serializable schedule data
        
    Returns:
        16 character hexadecimal fingerprint
    """
    content = canonical_json(payload).encode("utf-8")
    return hashlib.blake2b(content, digest_size=FINGERPRINT_DIGEST_SIZE).hexdigest()
