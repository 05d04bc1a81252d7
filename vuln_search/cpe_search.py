"""Resolve free-text product queries to CPE 2.3 identifiers.

Queries and CPE entries are turned into term frequency vectors whose weights
decay with the position of a term. Candidates are fetched from an inverted
term index and ranked by cosine similarity.
"""

import logging
import math
import re
from collections import Counter
from typing import Dict, List, Optional, Tuple

from .cpe import MATCH_CPE_23_RE, get_cpe_prefix, is_cpe_equal, pad_cpe
from .database import ProductDatabase
from .query_rewriter import (
    get_alternative_queries_mapping,
    get_possible_versions_in_query,
    is_versionless_query,
)

logger = logging.getLogger(__name__)

TEXT_TO_VECTOR_RE = re.compile(r"[\w+\.]+")
SPLIT_QUERY_TERMS_RE = re.compile(r"[ _\-\.]")
VERSION_SPLIT_DIFF_CHARSETS_RE = re.compile(r"(?<=\d)(?=[^\d.])")
CPE_CREATION_DEL_SYMBOLS_RE = re.compile(r'[\]"\|{>)/`<#},\[\:(=;^\'%]')

CPE_TERM_WEIGHT_EXP_FACTOR = -0.08
QUERY_TERM_WEIGHT_EXP_FACTOR = -0.25
CPE_SEARCH_COUNT = 10
CPE_SEARCH_THRESHOLD = 0.68
CPE_SEARCH_THRESHOLD_ALT = 0.25
TF_IDF_DEDUPLICATION_KEYWORDS = {"apache": 1, "flask": 1}

ScoredCpe = Tuple[str, float]


def _deduplicate_keywords(words: List[str]) -> List[str]:
    """Drop repeated occurrences of very common vendor words, keeping the last ones."""
    words = list(words)
    for keyword, max_count in TF_IDF_DEDUPLICATION_KEYWORDS.items():
        if keyword not in words:
            continue
        kw_count = words.count(keyword)
        del_idxs = []
        for i, word in enumerate(words):
            if kw_count < max_count + 1 or kw_count == len(words):
                break
            if word == keyword:
                del_idxs.append(i)
                kw_count -= 1
        for offset, idx in enumerate(del_idxs):
            del words[idx - offset]
    return words


def _position_weights(words: List[str], factor: float) -> Dict[str, float]:
    weights: Dict[str, float] = {}
    for i, word in enumerate(words):
        if word not in weights:
            weights[word] = math.exp(factor * i)
    return weights


def compute_cpe_term_vector(cpe: str, name: str = "") -> Tuple[Dict[str, float], float]:
    """Compute the weighted term vector and its L2 norm of a CPE index entry.

    This is the corpus side counterpart of :func:`compute_query_term_vector`
    and is what ``cpe_entries.term_frequencies`` holds.
    """
    cpe_mod = cpe.replace("_", ":").replace("*", "").replace("\\", "")
    cpe_elems = [part for part in cpe_mod[10:].split(":") if part != ""]

    words_cpe = _deduplicate_keywords(TEXT_TO_VECTOR_RE.findall(" ".join(cpe_elems)))
    words_name = _deduplicate_keywords(TEXT_TO_VECTOR_RE.findall(" ".join(name.lower().split())))

    weights_cpe = _position_weights(words_cpe, CPE_TERM_WEIGHT_EXP_FACTOR)
    weights_name = _position_weights(words_name, CPE_TERM_WEIGHT_EXP_FACTOR)

    term_freqs = Counter(words_cpe + words_name)
    vector: Dict[str, float] = {}
    for term, tf in term_freqs.items():
        value = tf / len(term_freqs)
        if term in weights_cpe and term in weights_name:
            value *= 0.5 * weights_cpe[term] + 0.5 * weights_name[term]
        elif term in weights_cpe:
            value *= weights_cpe[term]
        else:
            value *= weights_name[term]
        vector[term] = value

    norm = math.sqrt(sum(value ** 2 for value in vector.values()))
    return vector, norm


def compute_query_term_vector(words: List[str]) -> Tuple[Dict[str, float], float]:
    """Compute the weighted term vector and its L2 norm of a tokenized query."""
    weights = _position_weights(words, QUERY_TERM_WEIGHT_EXP_FACTOR)
    term_freqs = Counter(words)
    vector = {term: weights[term] * (tf / len(term_freqs)) for term, tf in term_freqs.items()}
    norm = math.sqrt(sum(value ** 2 for value in vector.values()))
    return vector, norm


def get_specificity_class(cpe: str) -> str:
    """Key grouping CPEs of one product by how many of their fields are set."""
    unset_fields = sum(field in ("*", "-", "") for field in cpe.split(":"))
    return get_cpe_prefix(cpe) + "-" + str(10 - unset_fields)


def _rank(candidates: Dict[str, ScoredCpe]) -> List[ScoredCpe]:
    return sorted(set(candidates.values()), key=lambda entry: (-entry[1], entry[0]))


def _search_cpes(
    queries_raw: List[str],
    product_db: ProductDatabase,
    count: int = CPE_SEARCH_COUNT,
    threshold: float = CPE_SEARCH_THRESHOLD_ALT,
) -> Dict[str, List[ScoredCpe]]:
    """Rank CPE entries for every query and its alternative phrasings."""
    queries = [query.lower() for query in queries_raw]
    alt_queries_mapping = get_alternative_queries_mapping(queries)
    for alt_queries in alt_queries_mapping.values():
        queries += alt_queries

    # only the first query of every distinct word sequence gets scored
    query_vectors: Dict[str, Tuple[Dict[str, float], float]] = {}
    seen_word_lists: List[List[str]] = []
    all_query_words = set()
    for query in queries:
        words = TEXT_TO_VECTOR_RE.findall(query)
        if words in seen_word_lists:
            continue
        seen_word_lists.append(words)
        vector, norm = compute_query_term_vector(words)
        query_vectors[query] = (vector, norm)
        all_query_words |= set(vector)

    entry_ids: List[int] = []
    for word in all_query_words:
        entry_ids += product_db.get_entry_ids_for_term(word)
    cpe_entries = product_db.get_cpe_entries(entry_ids)
    logger.debug(f"Scoring {len(cpe_entries)} CPE entries for {len(query_vectors)} queries")

    most_similar: Dict[str, Dict[str, ScoredCpe]] = {query: {} for query in query_vectors}
    processed_cpes = set()
    for cpe, cpe_vector, cpe_norm in cpe_entries:
        if cpe in processed_cpes:
            continue
        processed_cpes.add(cpe)

        for query, (query_vector, query_norm) in query_vectors.items():
            normalization = cpe_norm * query_norm
            if not normalization:
                continue
            shared_terms = set(cpe_vector) & set(query_vector)
            inner_product = sum(cpe_vector[term] * query_vector[term] for term in shared_terms)
            score = inner_product / normalization
            if threshold > 0 and score < threshold:
                continue

            cpe_class = get_specificity_class(cpe)
            best = most_similar[query].get(cpe_class)
            if best is None or score > best[1]:
                most_similar[query][cpe_class] = (cpe, score)

    ranked = {query: _rank(candidates) for query, candidates in most_similar.items()}
    if count != -1:
        ranked = {query: results[:count] for query, results in ranked.items()}

    results: Dict[str, List[ScoredCpe]] = {}
    for query_raw in queries_raw:
        query = query_raw.lower()
        unified = set(ranked.get(query, []))
        if unified:
            for alt_query in alt_queries_mapping.get(query, []):
                if alt_query != query:
                    unified |= set(ranked.get(alt_query, []))

        merged: List[ScoredCpe] = []
        seen_cpes = set()
        for cpe, score in sorted(unified, key=lambda entry: (-entry[1], entry[0])):
            if cpe not in seen_cpes:
                seen_cpes.add(cpe)
                merged.append((cpe, score))

        results[query_raw] = merged[:count] if count != -1 else merged
    return results


def create_cpes_from_base_cpe_and_query(cpe: str, query: str) -> List[str]:
    """Put version fragments found in the query into the version fields of a retrieved CPE."""
    new_cpes = []
    version_parts = get_possible_versions_in_query(query)

    # successive version parts go into successive CPE fields
    if len(version_parts) > 2:
        for i in range(1, len(version_parts)):
            cpe_parts = cpe.split(":")
            cpe_parts = cpe_parts[:5] + version_parts[1:i + 1] + cpe_parts[5 + i:]
            new_cpes.append(":".join(cpe_parts))

    # a single version mixing charsets, e.g. 10.4p18 -> 10.4 p18
    if len(version_parts) == 1:
        charset_switch = VERSION_SPLIT_DIFF_CHARSETS_RE.search(version_parts[0])
        if charset_switch:
            main_version = version_parts[0][:charset_switch.start()]
            sub_version = version_parts[0][charset_switch.start():]
            while sub_version and not sub_version[0].isalnum():
                sub_version = sub_version[1:]
            if sub_version:
                cpe_parts = cpe.split(":")
                cpe_parts[5] = main_version
                cpe_parts[6] = sub_version
                new_cpes.append(":".join(cpe_parts))

    version_part_in_cpe = False
    for i, version in enumerate(version_parts[2:]):
        if version in cpe.split(":")[6 + i:]:
            version_part_in_cpe = True
            break

    cpe_part_in_version = False
    if version_parts:
        cpe_part_in_version = any(part in version_parts[0] for part in cpe.split(":")[6:])

    # the entire version string goes into the version field
    if version_parts and not version_part_in_cpe and not cpe_part_in_version:
        cpe_parts = cpe.split(":")
        cpe_parts[5] = version_parts[0].replace(" ", "_")

        # drop more specific fields the query does not mention
        for i in range(6, len(cpe_parts)):
            mentioned = any(
                cpe_parts[i] + sep in query or sep + cpe_parts[i] in query for sep in (" ", "-", "+", "_")
            )
            if not mentioned:
                cpe_parts[i] = "*"
        new_cpes.append(":".join(cpe_parts))

    return new_cpes


def create_base_cpe_if_versionless_query(cpe: str, query: str) -> Optional[str]:
    if is_versionless_query(query):
        return ":".join(cpe.split(":")[:5] + ["*"] * 8)
    return None


def _contains_version_digits(version: str, check_str: str) -> bool:
    """Check that the digits of a version appear in order inside ``check_str``."""
    idx_version, idx_check = 0, 0
    while idx_version < len(version) and idx_check < len(check_str):
        while idx_version < len(version) and not version[idx_version].isdigit():
            idx_version += 1
        if idx_version < len(version) and version[idx_version] == check_str[idx_check]:
            idx_version += 1
        idx_check += 1
    return idx_version == len(version)


def cpe_matches_query(cpe: str, query: str) -> bool:
    """Return True if the retrieved CPE plausibly reflects the query, e.g. its version."""
    check_str = cpe[8:]

    if any(char.isdigit() for char in query) and not any(char.isdigit() for char in check_str):
        return False

    versions_in_query = get_possible_versions_in_query(query)
    # short versions without a dot are too ambiguous to check
    dotted_versions = [version for version in versions_in_query if "." in version]
    if versions_in_query and not any(_contains_version_digits(v, check_str) for v in dotted_versions):
        return False

    non_version_terms = [
        term.lower() for term in SPLIT_QUERY_TERMS_RE.split(query) if term not in versions_in_query
    ]
    return any(term in cpe for term in non_version_terms)


def _add_potential_cpe(pot_cpes: List[ScoredCpe], cpe: str, score: float) -> None:
    if cpe and not any(is_cpe_equal(cpe, other) for other, _ in pot_cpes):
        pot_cpes.append((cpe, score))


def _build_potential_cpes(cpes: List[ScoredCpe], creation_query: str) -> List[ScoredCpe]:
    """Synthesize version-qualified and versionless candidates from the retrieved CPEs.

    Synthesized candidates carry the negated score of the CPE they derive from.
    """
    pot_cpes: List[ScoredCpe] = []
    for cpe, score in cpes:
        for new_cpe in create_cpes_from_base_cpe_and_query(cpe, creation_query):
            if any(is_cpe_equal(new_cpe, existing) for existing, _ in cpes):
                continue
            _add_potential_cpe(pot_cpes, new_cpe, -1 * score)
        _add_potential_cpe(pot_cpes, cpe, score)

    inserts: List[Tuple[ScoredCpe, int]] = []
    new_idx = 0
    for cpe, score in pot_cpes:
        base_cpe = create_base_cpe_if_versionless_query(cpe, creation_query)
        if base_cpe:
            known = any(is_cpe_equal(base_cpe, other) for other, _ in pot_cpes) or any(
                is_cpe_equal(base_cpe, other[0]) for other, _ in inserts
            )
            if not known:
                inserts.append(((base_cpe, -1 * abs(score)), new_idx))
                new_idx += 1
        new_idx += 1

    for entry, idx in inserts:
        pot_cpes.insert(idx, entry)
    return pot_cpes


def search_cpes(
    query: str,
    product_db: ProductDatabase,
    count: Optional[int] = None,
    threshold: Optional[float] = None,
    threshold_alt: float = CPE_SEARCH_THRESHOLD_ALT,
) -> Dict[str, List[ScoredCpe]]:
    """Find the CPEs best matching a product query.

    Returns a dict with the accepted ``cpes`` and the ``pot_cpes`` that were
    synthesized from the query's version or that did not pass the sanity
    checks. Both are lists of ``(cpe, score)`` tuples.
    """
    if count is None:
        count = CPE_SEARCH_COUNT
    if threshold is None:
        threshold = CPE_SEARCH_THRESHOLD

    query = (query or "").strip()
    if not query:
        return {"cpes": [], "pot_cpes": []}

    if MATCH_CPE_23_RE.match(query):
        return {"cpes": [(pad_cpe(query), 1.0)], "pot_cpes": []}

    cpes = _search_cpes([query], product_db, count=count, threshold=threshold_alt).get(query, [])
    if not cpes:
        logger.info(f"No CPE candidates found for '{query}'")
        return {"cpes": [], "pot_cpes": []}

    creation_query = CPE_CREATION_DEL_SYMBOLS_RE.sub(" ", query).replace("  ", " ")
    pot_cpes = _build_potential_cpes(cpes, creation_query)

    prev_count = len(cpes)
    cpes = [entry for entry in cpes if cpe_matches_query(entry[0], creation_query)]
    if len(cpes) != prev_count:
        if cpes and cpes[0][1] > threshold:
            return {"cpes": cpes, "pot_cpes": pot_cpes}

        query_lower = query.lower()
        relevant = [
            entry for entry in pot_cpes
            if any(word.lower() in query_lower for word in entry[0].split(":")[3:5])
        ]
        return {"cpes": [], "pot_cpes": relevant}

    # a versionless query should not be answered with a versioned CPE
    top_version = cpes[0][0].split(":")[5] if cpes[0][0].count(":") > 5 else ""
    if top_version not in ("*", "-") and create_base_cpe_if_versionless_query(cpes[0][0], query):
        versionless = [
            (cpe, score) for cpe, score in pot_cpes
            if (cpe.split(":")[5] if cpe.count(":") > 5 else "") in ("", "*", "-")
        ]
        return {"cpes": [], "pot_cpes": versionless}

    if cpes[0][1] < threshold:
        cpes = []
    return {"cpes": cpes, "pot_cpes": pot_cpes}
