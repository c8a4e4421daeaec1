"""Cascading entity matcher.

``match_entity`` resolves a statement description to a known entity by trying
five stages in order and returning the first hit:

1. alias      - the description contains a known alias token
2. exact      - the description equals an entity name
3. prefix     - the description starts with an entity name (longest wins)
4. contains   - an entity name of 4+ characters appears inside the
                description (longest wins)
5. retry      - stages 2-4 again with apostrophes/backticks stripped from
                both sides, so ``MCDONALDS`` finds ``McDonald's``

All comparisons are case-insensitive. Every stage is a pure function
``(description, candidates) -> MatchResult | None`` and can be exercised on
its own.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass

from .models import AliasTable, EntityLookup, MatchResult, MatchType

CONTAINS_MIN_LENGTH = 4

_QUOTE_CHARS = "'’‘`"
_STRIP_QUOTES = str.maketrans("", "", _QUOTE_CHARS)


@dataclass(frozen=True, slots=True)
class Candidate:
    """An entity prepared for comparison; ``key`` is the upper-cased form."""

    key: str
    name: str
    entity_id: str

    def result(self, match_type: MatchType) -> MatchResult:
        return MatchResult(entity_name=self.name, entity_id=self.entity_id, match_type=match_type)


type Stage = Callable[[str, Sequence[Candidate]], MatchResult | None]


def normalize(text: str) -> str:
    return text.strip().upper()


def strip_quotes(text: str) -> str:
    return text.translate(_STRIP_QUOTES)


def build_candidates(
    entities: EntityLookup, *, key: Callable[[str], str] = normalize
) -> list[Candidate]:
    out: list[Candidate] = []
    for name, entity_id in entities.items():
        k = key(name)
        if k:
            out.append(Candidate(key=k, name=name, entity_id=entity_id))
    return out


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------


def match_alias(
    description: str, candidates: Sequence[Candidate], aliases: AliasTable
) -> MatchResult | None:
    """First alias (in table order) contained in ``description`` whose target exists.

    An alias pointing at a name missing from the lookup is inert and skipped.
    """

    if not aliases:
        return None
    by_key = {c.key: c for c in candidates}
    for alias, target in aliases.items():
        token = alias.upper()
        if not token.strip() or token not in description:
            continue
        hit = by_key.get(normalize(target))
        if hit is not None:
            return hit.result("alias")
    return None


def match_exact(description: str, candidates: Sequence[Candidate]) -> MatchResult | None:
    for c in candidates:
        if c.key == description:
            return c.result("exact")
    return None


def _longest(hits: list[Candidate]) -> Candidate | None:
    if not hits:
        return None
    # max() keeps the first of equally long names, so lookup order breaks ties.
    return max(hits, key=lambda c: len(c.name))


def match_prefix(description: str, candidates: Sequence[Candidate]) -> MatchResult | None:
    best = _longest([c for c in candidates if description.startswith(c.key)])
    return best.result("prefix") if best else None


def match_contains(description: str, candidates: Sequence[Candidate]) -> MatchResult | None:
    best = _longest(
        [c for c in candidates if len(c.key) >= CONTAINS_MIN_LENGTH and c.key in description]
    )
    return best.result("contains") if best else None


TEXT_STAGES: tuple[Stage, ...] = (match_exact, match_prefix, match_contains)


def first_match(
    description: str, candidates: Sequence[Candidate], stages: Sequence[Stage] = TEXT_STAGES
) -> MatchResult | None:
    for stage in stages:
        result = stage(description, candidates)
        if result is not None:
            return result
    return None


def match_stripped(description: str, entities: EntityLookup) -> MatchResult | None:
    """Re-run exact/prefix/contains with quote characters removed from both sides."""

    stripped = strip_quotes(description).strip()
    if not stripped:
        return None
    candidates = build_candidates(entities, key=lambda n: normalize(strip_quotes(n)))
    return first_match(stripped, candidates)


# ---------------------------------------------------------------------------
# Cascade
# ---------------------------------------------------------------------------


def match_entity(
    description: str,
    entities: EntityLookup,
    aliases: AliasTable | None = None,
) -> MatchResult | None:
    """Resolve ``description`` to an entity, or ``None`` when nothing matches."""

    normalized = normalize(description or "")
    if not normalized or not entities:
        return None

    candidates = build_candidates(entities)
    return (
        match_alias(normalized, candidates, aliases or {})
        or first_match(normalized, candidates)
        or match_stripped(normalized, entities)
    )


def resolve_entity_name(name: str, entities: Mapping[str, str]) -> tuple[str, str] | None:
    """Case-insensitive ``name -> (canonical name, id)`` lookup."""

    wanted = normalize(name)
    if not wanted:
        return None
    for candidate, entity_id in entities.items():
        if normalize(candidate) == wanted:
            return candidate, entity_id
    return None


__all__ = [
    "CONTAINS_MIN_LENGTH",
    "Candidate",
    "build_candidates",
    "first_match",
    "match_alias",
    "match_contains",
    "match_entity",
    "match_exact",
    "match_prefix",
    "match_stripped",
    "normalize",
    "resolve_entity_name",
    "strip_quotes",
]
