
import httpx
from typing import Dict, List, Optional

from .models import Coding
from .terminology import codings_from_value_set


async def _fetch(session: httpx.AsyncClient, url: str, params: Optional[Dict[str, str]] = None) -> dict:
    r = await session.get(url, params=params, headers={"Accept": "application/fhir+json"}, timeout=15)
    r.raise_for_status()
    return r.json()


async def fetch_value_set(session: httpx.AsyncClient, url: str) -> List[Coding]:
    """Fetch an expanded ValueSet (e.g. `.../ValueSet/<id>/$expand`) from a FHIR server."""
    data = await _fetch(session, url)
    return codings_from_value_set(data)
