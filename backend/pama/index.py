"""
In-memory full-text index over a fixed terminology.

Each coding is indexed under two fields: `search` (the humanized display text)
and `code`. Queries are scored per field with BM25L (rank_bm25) and the field
scores are summed with per-field boosts. A query token matches an indexed term exactly,
as a prefix (typeahead), or, failing both, as a close spelling; the three kinds
of match are weighted in that order.
"""
from __future__ import annotations

import re
import bisect
import difflib
import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from rank_bm25 import BM25L

from .errors import TerminologyIntegrityError
from .models import Coding, IndexedCoding

logger = logging.getLogger(__name__)

_PARENTHETICAL_RE = re.compile(r"\(.*?\)")
_MODALITY_SYNONYMS = (
    (re.compile(r"computed tomography", re.IGNORECASE), "CT"),
    (re.compile(r"magnetic resonance", re.IGNORECASE), "MRI"),
)
_SEPARATOR_RE = re.compile(r"[\s\-/,;]+")
_TRIM_RE = re.compile(r"^\W+|\W+$")

STOP_WORDS = frozenset({"a", "an", "and", "as", "at", "by", "for", "in", "of", "on", "or", "the", "to", "with"})

DEFAULT_FIELD_BOOSTS = {"search": 1.0, "code": 1.5}

EXACT_MATCH = 1.0
PREFIX_MATCH = 0.5
FUZZY_MATCH = 0.2
FUZZY_MIN_LENGTH = 4
FUZZY_CUTOFF = 0.8


def searchable_text(display: str) -> str:
    """Strip the first parenthetical qualifier and add modality abbreviations.

    "Computed tomography of chest (procedure)" -> "Computed tomography CT of chest"
    """
    text = _PARENTHETICAL_RE.sub("", display, count=1)
    for pattern, abbreviation in _MODALITY_SYNONYMS:
        text = pattern.sub(lambda m: f"{m.group(0)} {abbreviation}", text, count=1)
    return " ".join(text.split())


def tokenize(text: str) -> List[str]:
    """Shared analyzer for documents and queries."""
    out: List[str] = []
    for raw in _SEPARATOR_RE.split((text or "").lower()):
        tok = _TRIM_RE.sub("", raw)
        if tok and tok not in STOP_WORDS:
            out.append(tok)
    return out


class _FieldIndex:
    """One field: postings (term -> documents) for candidate lookup, rank_bm25 for scoring."""

    def __init__(self, token_lists: Sequence[List[str]]):
        self.postings: Dict[str, List[int]] = {}
        for doc, tokens in enumerate(token_lists):
            for tok in dict.fromkeys(tokens):
                self.postings.setdefault(tok, []).append(doc)
        self.vocabulary = sorted(self.postings)
        # BM25L keeps idf positive even for terms present in most documents
        self.bm25 = BM25L([list(tokens) for tokens in token_lists]) if token_lists else None

    def expand(self, token: str) -> List[Tuple[str, float]]:
        """Indexed terms a query token can stand for, with their match weight."""
        out: List[Tuple[str, float]] = []
        if token in self.postings:
            out.append((token, EXACT_MATCH))
        i = bisect.bisect_left(self.vocabulary, token)
        while i < len(self.vocabulary) and self.vocabulary[i].startswith(token):
            if self.vocabulary[i] != token:
                out.append((self.vocabulary[i], PREFIX_MATCH))
            i += 1
        if not out and len(token) >= FUZZY_MIN_LENGTH:
            for term in difflib.get_close_matches(token, self.vocabulary, n=3, cutoff=FUZZY_CUTOFF):
                out.append((term, FUZZY_MATCH))
        return out

    def score(self, token: str) -> Dict[int, float]:
        # best match per document; one query token never counts twice in a field
        best: Dict[int, float] = {}
        for term, weight in self.expand(token):
            docs = self.postings[term]
            # only documents holding the term, so BM25L's delta never rewards absence
            for doc, s in zip(docs, self.bm25.get_batch_scores([term], docs)):
                s = weight * float(s)
                if s > best.get(doc, 0.0):
                    best[doc] = s
        return best


class CodeSearchIndex:
    """Read-only ranked search over one terminology set.

    Build with `CodeSearchIndex.build(codings)`; there is no way to add or remove
    documents afterwards.
    """

    def __init__(self, documents: Sequence[IndexedCoding], field_boosts: Optional[Mapping[str, float]] = None):
        self._documents: Tuple[IndexedCoding, ...] = tuple(documents)
        self._by_code: Dict[str, Coding] = {
            d.code: Coding(code=d.code, display=d.display, system=d.system) for d in self._documents
        }
        self._boosts = dict(DEFAULT_FIELD_BOOSTS if field_boosts is None else field_boosts)
        self._fields = {
            "search": _FieldIndex([tokenize(d.search) for d in self._documents]),
            "code": _FieldIndex([tokenize(d.code) for d in self._documents]),
        }

    @classmethod
    def build(cls, codings: Iterable[Coding], field_boosts: Optional[Mapping[str, float]] = None) -> "CodeSearchIndex":
        """Index a terminology list.

        Raises TerminologyIntegrityError when a code repeats with a different
        display; exact repeats are collapsed onto the first occurrence.
        """
        seen: Dict[str, Coding] = {}
        documents: List[IndexedCoding] = []
        for c in codings:
            prev = seen.get(c.code)
            if prev is not None:
                if prev.display != c.display:
                    raise TerminologyIntegrityError(c.code, prev.display, c.display)
                continue
            seen[c.code] = c
            documents.append(
                IndexedCoding(code=c.code, display=c.display, system=c.system, search=searchable_text(c.display))
            )
        index = cls(documents, field_boosts)
        logger.info(f"built code index: documents={len(index)} terms={len(index._fields['search'].vocabulary)}")
        return index

    def __len__(self) -> int:
        return len(self._documents)

    @property
    def documents(self) -> Tuple[IndexedCoding, ...]:
        return self._documents

    def get(self, code: str) -> Optional[Coding]:
        return self._by_code.get(code)

    def scored(self, query: str) -> List[Tuple[Coding, float]]:
        tokens = tokenize(query)
        if not tokens:
            return []
        totals: Dict[int, float] = defaultdict(float)
        for tok in tokens:
            for name, field in self._fields.items():
                boost = self._boosts.get(name, 1.0)
                for doc, s in field.score(tok).items():
                    totals[doc] += boost * s
        # Sort by score desc, then by terminology order asc
        ranked = sorted(totals.items(), key=lambda t: (-t[1], t[0]))
        return [(self._by_code[self._documents[doc].code], s) for doc, s in ranked]

    def search(self, query: str) -> List[Coding]:
        return [c for c, _ in self.scored(query)]
