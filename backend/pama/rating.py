from typing import Any, Dict, List, Mapping

from .models import ExtractedRating

# Wire contract with the CDS host; do not change.
PAMA_RATING_URL = "http://fhir.org/argonaut/Extension/pama-rating"

RATING_SYMBOLS: Dict[str, str] = {
    "appropriate": "✓",
    "not-appropriate": "⚠",
}


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def extract_ratings(resource: Mapping[str, Any]) -> List[ExtractedRating]:
    """
    Collect every PAMA rating code carried in a resource's `extension` array.

    Extensions with another url, or without a usable
    `valueCodeableConcept.coding`, contribute nothing. A resource may yield
    several ratings (several codings, or several rating extensions).
    """
    if not isinstance(resource, Mapping):
        return []
    resource_id = resource.get("id")
    out: List[ExtractedRating] = []
    for ext in _as_list(resource.get("extension")):
        if not isinstance(ext, Mapping) or ext.get("url") != PAMA_RATING_URL:
            continue
        concept = ext.get("valueCodeableConcept")
        if not isinstance(concept, Mapping):
            continue
        for coding in _as_list(concept.get("coding")):
            code = coding.get("code") if isinstance(coding, Mapping) else None
            if isinstance(code, str):
                out.append(ExtractedRating(resource_id=resource_id, rating=code))
    return out


def rating_symbol(rating: str) -> str:
    return RATING_SYMBOLS.get(rating or "", "")


def describe_rating(rating: str) -> str:
    """Banner text, e.g. 'appropriate ✓'."""
    if not rating:
        return ""
    symbol = rating_symbol(rating)
    return f"{rating} {symbol}" if symbol else rating
