import logging
import threading
from typing import Dict, Iterable, List, Optional, Tuple

from cardlens.core import constants
from cardlens.core.errors import EmptyCatalogError
from cardlens.core.models import CardRecord, MatchCandidate, MatchType
from cardlens.core.text_utils import levenshtein_distance, normalize_key

logger = logging.getLogger(__name__)


def classify_similarity(score: float) -> MatchType:
    if score >= 1.0:
        return MatchType.EXACT
    if score > constants.MATCH_TYPE_HIGH:
        return MatchType.HIGH
    if score > constants.MATCH_TYPE_MEDIUM:
        return MatchType.MEDIUM
    return MatchType.LOW


class CatalogIndex:
    """
    Immutable lookup structure over a list of card records.

    Holds three maps (lower-cased name, id, set+collector number) that all
    point at the same CardRecord objects. Built in a single pass and never
    modified afterwards; a changed catalog means a new index.
    """

    def __init__(self, records: Tuple[CardRecord, ...], by_name: Dict[str, CardRecord],
                 by_id: Dict[str, CardRecord], by_set_number: Dict[str, CardRecord]):
        self.records = records
        self._by_name = by_name
        self._by_id = by_id
        self._by_set_number = by_set_number

    @classmethod
    def build(cls, records: Iterable[CardRecord]) -> "CatalogIndex":
        records = tuple(records)
        if not records:
            raise EmptyCatalogError()

        by_name: Dict[str, CardRecord] = {}
        by_id: Dict[str, CardRecord] = {}
        by_set_number: Dict[str, CardRecord] = {}

        # First printing in catalog order owns a shared key
        for card in records:
            by_name.setdefault(normalize_key(card.name), card)
            by_id.setdefault(card.id, card)
            if card.set_code and card.collector_number:
                by_set_number.setdefault(card.set_number_key, card)

        logger.info(f"Built catalog index: {len(records)} records, {len(by_name)} distinct names")
        return cls(records, by_name, by_id, by_set_number)

    def __len__(self):
        return len(self.records)

    def lookup_exact(self, name: str) -> Optional[CardRecord]:
        if not name:
            return None
        return self._by_name.get(normalize_key(name))

    def lookup_by_id(self, card_id: str) -> Optional[CardRecord]:
        if not card_id:
            return None
        return self._by_id.get(card_id.strip())

    def lookup_by_set_number(self, set_code: str, number: str) -> Optional[CardRecord]:
        if not set_code or not number:
            return None
        return self._by_set_number.get(f"{set_code.strip()}_{number.strip()}".lower())

    def fuzzy_search(self, query: str,
                     max_results: int = constants.FUZZY_MAX_RESULTS,
                     min_similarity: float = constants.FUZZY_MIN_SIMILARITY,
                     exact_first: bool = True,
                     unique_names: bool = False) -> List[MatchCandidate]:
        """
        Ranks catalog records by edit-distance similarity to the query.

        An exact name hit short-circuits when exact_first is set. Otherwise
        every record is scored, those under min_similarity are dropped and
        the rest are returned best first (ties keep catalog order).
        """
        q = normalize_key(query or "")
        if not q or max_results <= 0:
            return []

        if exact_first:
            exact = self._by_name.get(q)
            if exact is not None:
                return [MatchCandidate(card=exact, similarity=1.0, match_type=MatchType.EXACT)]

        q_len = len(q)
        scores: Dict[str, Optional[float]] = {}
        seen_names = set()
        candidates: List[MatchCandidate] = []

        for card in self.records:
            name = card.name.lower()
            if unique_names:
                if name in seen_names:
                    continue
                seen_names.add(name)

            if name in scores:
                score = scores[name]
            else:
                score = self._score(q, q_len, name, min_similarity)
                scores[name] = score

            if score is None:
                continue
            candidates.append(MatchCandidate(card=card, similarity=score, match_type=classify_similarity(score)))

        # sort() is stable, so equal scores stay in catalog order
        candidates.sort(key=lambda c: c.similarity, reverse=True)
        return candidates[:max_results]

    @staticmethod
    def _score(q: str, q_len: int, name: str, min_similarity: float) -> Optional[float]:
        if name == q:
            return 1.0
        longest = max(q_len, len(name))
        if longest == 0 or not name:
            return 0.0 if min_similarity <= 0 else None
        # The distance is at least the length gap, so skip hopeless names early
        if 1.0 - abs(q_len - len(name)) / longest < min_similarity:
            return None
        max_distance = max(0, int((1.0 - min_similarity) * longest + 1e-9))
        score = 1.0 - levenshtein_distance(q, name, max_distance=max_distance) / longest
        return score if score >= min_similarity else None

    def text_search(self, query: str, field: str = "name",
                    limit: int = constants.TEXT_SEARCH_LIMIT,
                    exact: bool = False) -> List[CardRecord]:
        if field not in constants.TEXT_SEARCH_FIELDS:
            raise ValueError(f"Unsupported search field '{field}'")
        q = normalize_key(query or "")
        if not q or limit <= 0:
            return []

        def matches(value: str) -> bool:
            value = value.lower()
            return value == q if exact else q in value

        results: List[CardRecord] = []
        for card in self.records:
            if field == "set":
                hit = card.set_code.lower() == q or matches(card.set_name)
            else:
                hit = matches(getattr(card, field) or "")
            if hit:
                results.append(card)
                if len(results) >= limit:
                    break
        return results

    def stats(self) -> Dict[str, int]:
        return {
            "records": len(self.records),
            "names": len(self._by_name),
            "ids": len(self._by_id),
            "set_numbers": len(self._by_set_number),
        }


class CardCatalog:
    """
    Owns the live CatalogIndex.

    Rebuilds happen off to the side and replace the index reference in one
    assignment, so readers never see a partially built index. Queries made
    before the first successful build return empty results.
    """

    def __init__(self, records: Optional[Iterable[CardRecord]] = None):
        self._index: Optional[CatalogIndex] = None
        self._write_lock = threading.Lock()
        if records is not None:
            self.refresh(records)

    @property
    def index(self) -> Optional[CatalogIndex]:
        return self._index

    @property
    def is_ready(self) -> bool:
        return self._index is not None

    def refresh(self, records: Iterable[CardRecord]) -> CatalogIndex:
        with self._write_lock:
            # Build first: an EmptyCatalogError leaves the old index serving
            new_index = CatalogIndex.build(records)
            self._index = new_index
        logger.info(f"Catalog refreshed ({len(new_index)} records)")
        return new_index

    def invalidate(self):
        with self._write_lock:
            self._index = None
        logger.info("Catalog invalidated")

    def lookup_exact(self, name: str) -> Optional[CardRecord]:
        index = self._index
        return index.lookup_exact(name) if index else None

    def lookup_by_id(self, card_id: str) -> Optional[CardRecord]:
        index = self._index
        return index.lookup_by_id(card_id) if index else None

    def lookup_by_set_number(self, set_code: str, number: str) -> Optional[CardRecord]:
        index = self._index
        return index.lookup_by_set_number(set_code, number) if index else None

    def lookup(self, name_or_id: str) -> Optional[CardRecord]:
        """Resolves a name, an id, or a 'set_number' key such as 'lea_161'."""
        index = self._index
        if index is None or not name_or_id:
            return None
        card = index.lookup_exact(name_or_id) or index.lookup_by_id(name_or_id)
        if card is None and "_" in name_or_id:
            set_code, _, number = name_or_id.strip().rpartition("_")
            card = index.lookup_by_set_number(set_code, number)
        return card

    def fuzzy_search(self, query: str, **kwargs) -> List[MatchCandidate]:
        index = self._index
        return index.fuzzy_search(query, **kwargs) if index else []

    def text_search(self, query: str, field: str = "name", **kwargs) -> List[CardRecord]:
        index = self._index
        return index.text_search(query, field, **kwargs) if index else []

    def stats(self) -> Dict[str, int]:
        index = self._index
        if index is None:
            return {"records": 0, "names": 0, "ids": 0, "set_numbers": 0}
        return index.stats()
