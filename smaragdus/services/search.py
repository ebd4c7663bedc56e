# smaragdus/services/search.py
import logging
import re
from difflib import SequenceMatcher, get_close_matches
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from ..constants import GEM_CLARITIES, GEM_COLORS, GEM_CUTS, GEMSTONE_TYPES
from ..models import Gemstone, GemstoneEnrichment, Origin
from .catalog import CatalogFilters, enrich, filter_conditions, pagination

logger = logging.getLogger(__name__)

FUZZY_CUTOFF = 0.6
SUGGESTION_MIN_SIMILARITY = 0.5

# (field, exact-match score, substring score)
FIELD_WEIGHTS = (
    ("serial_number", 10, 5),
    ("name", 4, 2),
    ("color", 4, 2),
    ("cut", 3, 1),
    ("clarity", 3, 1),
    ("origin", 3, 1),
    ("description", 1, 1),
)


def tokenize(query: Optional[str]) -> List[str]:
    if not query:
        return []
    return [t for t in re.split(r"[\s,;]+", query.strip().lower()) if t]


def _document(g: Gemstone, origin_name: Optional[str], ai_text: Optional[str],
              with_descriptions: bool) -> Dict[str, str]:
    doc = {
        "serial_number": (g.serial_number or "").lower(),
        "name": (g.name or "").lower(),
        "color": (g.color or "").lower(),
        "cut": (g.cut or "").lower(),
        "clarity": (g.clarity or "").lower(),
        "origin": (origin_name or "").lower(),
        "description": "",
    }
    if with_descriptions:
        parts = [g.description, g.promotional_text, ai_text]
        doc["description"] = " ".join(p for p in parts if p).lower()
    return doc


def score_document(tokens: List[str], doc: Dict[str, str]) -> int:
    """Every token has to hit some field; 0 means no match."""
    total = 0
    for tok in tokens:
        best = 0
        for fld, exact, partial in FIELD_WEIGHTS:
            text = doc.get(fld) or ""
            if not text:
                continue
            if text == tok:
                best = max(best, exact)
            elif tok in text:
                best = max(best, partial)
        if best == 0:
            return 0
        total += best
    return total


def _vocabulary(docs: List[Dict[str, str]]) -> List[str]:
    words = set()
    for doc in docs:
        for fld in ("serial_number", "name", "color", "cut", "clarity", "origin"):
            words.update(w for w in re.split(r"\s+", doc.get(fld) or "") if w)
    return sorted(words)


def correct_tokens(tokens: List[str], docs: List[Dict[str, str]]) -> Optional[List[str]]:
    """Swap unknown tokens for their closest vocabulary word; None if nothing changed."""
    vocab = _vocabulary(docs)
    corrected = []
    changed = False
    for tok in tokens:
        if any(tok in (doc.get(fld) or "") for doc in docs for fld, _, _ in FIELD_WEIGHTS):
            corrected.append(tok)
            continue
        close = get_close_matches(tok, vocab, n=1, cutoff=FUZZY_CUTOFF)
        if close:
            corrected.append(close[0])
            changed = True
        else:
            corrected.append(tok)
    return corrected if changed else None


async def _load_candidates(db: AsyncSession, filters: Optional[CatalogFilters],
                           with_descriptions: bool) -> List[Tuple[Gemstone, Dict[str, str]]]:
    conds = filter_conditions(filters)
    q = select(Gemstone, Origin.name, GemstoneEnrichment.description).outerjoin(
        Origin, Origin.id == Gemstone.origin_id
    ).outerjoin(GemstoneEnrichment, GemstoneEnrichment.gemstone_id == Gemstone.id)
    if conds:
        q = q.where(and_(*conds))
    r = await db.execute(q.order_by(Gemstone.created_at.desc(), Gemstone.id))
    return [(g, _document(g, origin, ai, with_descriptions)) for g, origin, ai in r.all()]


def _rank(tokens: List[str], candidates) -> List[Gemstone]:
    if not tokens:
        return [g for g, _ in candidates]
    scored = []
    for idx, (g, doc) in enumerate(candidates):
        s = score_document(tokens, doc)
        if s > 0:
            scored.append((s, idx, g))
    # candidates are newest first, so idx breaks ties by recency
    scored.sort(key=lambda x: (-x[0], x[1]))
    return [g for _, _, g in scored]


async def search_gemstones(db: AsyncSession, query: Optional[str] = None,
                           filters: Optional[CatalogFilters] = None,
                           page: int = 1, page_size: int = 24,
                           search_descriptions: bool = False) -> Dict[str, Any]:
    tokens = tokenize(query)
    candidates = await _load_candidates(db, filters, search_descriptions)
    matches = _rank(tokens, candidates)
    used_fuzzy = False

    if not matches and tokens:
        logger.info("no exact matches for %r, trying fuzzy search", query)
        corrected = correct_tokens(tokens, [doc for _, doc in candidates])
        if corrected:
            fuzzy = _rank(corrected, candidates)
            if fuzzy:
                matches = fuzzy
                used_fuzzy = True

    start = (page - 1) * page_size
    page_rows = matches[start:start + page_size]
    return {
        "results": await enrich(db, page_rows),
        "pagination": pagination(page, page_size, len(matches)),
        "usedFuzzySearch": used_fuzzy,
    }


def _similarity(a: str, b: str) -> float:
    a, b = a.lower(), b.lower()
    if a.startswith(b):
        return 1.0
    if b in a:
        return 0.8
    return round(SequenceMatcher(None, a, b).ratio(), 3)


async def get_suggestions(db: AsyncSession, query: str, limit: int = 10) -> List[Dict[str, Any]]:
    """Autocomplete over serial numbers, types, colors and origins."""
    term = query.strip().lower()
    sources = (
        ("serial_number", select(Gemstone.serial_number).distinct()),
        ("type", select(Gemstone.name).distinct()),
        ("color", select(Gemstone.color).distinct()),
        ("origin", select(Origin.name).join(Gemstone, Gemstone.origin_id == Origin.id).distinct()),
    )
    out = []
    for category, q in sources:
        values = (await db.execute(q)).scalars().all()
        for value in values:
            if not value:
                continue
            relevance = _similarity(value, term)
            if relevance >= SUGGESTION_MIN_SIMILARITY:
                out.append({"suggestion": value, "category": category, "relevance": relevance})
    out.sort(key=lambda s: (-s["relevance"], s["suggestion"]))
    return out[:limit]


def get_fuzzy_suggestions(query: str, limit: int = 5) -> List[Dict[str, Any]]:
    """'Did you mean' terms from the catalog vocabulary."""
    term = query.strip().lower()
    vocab = {v.lower(): v for v in GEMSTONE_TYPES + GEM_COLORS + GEM_CUTS + GEM_CLARITIES}
    matches = get_close_matches(term, list(vocab), n=limit, cutoff=FUZZY_CUTOFF)
    return [
        {"suggestion": vocab[m], "similarity": round(SequenceMatcher(None, term, m).ratio(), 3)}
        for m in matches
    ]
