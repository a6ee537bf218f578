import os
import json
from pathlib import Path
from typing import Any, Dict, List

from pydantic import ValidationError

from .errors import TerminologyLoadError
from .models import Coding, SelectOption

DATA_DIR = Path(__file__).resolve().parent / "data"

PROCEDURE_CODES_PATH = os.getenv("PAMA_PROCEDURE_CODES_PATH", str(DATA_DIR / "pama-procedure-codes.json"))
REASON_CODES_PATH = os.getenv("PAMA_REASON_CODES_PATH", str(DATA_DIR / "pama-reason-codes.json"))


def codings_from_value_set(value_set: Dict[str, Any]) -> List[Coding]:
    """Pull the flat `expansion.contains` list out of an expanded ValueSet."""
    if not isinstance(value_set, dict):
        raise TerminologyLoadError("ValueSet must be a JSON object")
    contains = (value_set.get("expansion") or {}).get("contains")
    if not isinstance(contains, list):
        raise TerminologyLoadError(f"ValueSet {value_set.get('id')!r} has no expansion.contains")
    try:
        return [Coding.model_validate(c) for c in contains]
    except ValidationError as e:
        raise TerminologyLoadError(f"ValueSet {value_set.get('id')!r}: {e}") from e


def load_codings(path: str) -> List[Coding]:
    try:
        with open(path, encoding="utf-8") as fh:
            value_set = json.load(fh)
    except (OSError, json.JSONDecodeError) as e:
        raise TerminologyLoadError(f"cannot read {path}: {e}") from e
    return codings_from_value_set(value_set)


def load_procedure_codings() -> List[Coding]:
    return load_codings(PROCEDURE_CODES_PATH)


def load_reason_codings() -> List[Coding]:
    return load_codings(REASON_CODES_PATH)


def default_options(codings: List[Coding], limit: int = 10) -> List[SelectOption]:
    # what the picker shows before anything is typed
    return [SelectOption.from_coding(c) for c in codings[:limit]]
