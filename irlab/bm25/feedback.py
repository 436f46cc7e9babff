"""
Pseudo-relevance feedback (PRF) term selection.

The top results of an initial search are assumed relevant. Terms from their
chunks are weighted by term frequency × the originating chunk's score:

    weight(term) = Σ tf(term, chunk_i) × score_i     over the top results

The highest-weighted terms that are not already part of the query become
expansion terms for a second ranking pass.
"""

from typing import Collection, Dict, List, Mapping, Sequence, Tuple


def select_expansion_terms(
    feedback: Sequence[Tuple[Mapping[str, int], float]],
    query_terms: Collection[str],
    max_terms: int = 5,
) -> List[str]:
    """
    Pick expansion terms from feedback chunks.

    Args:
        feedback: (term_frequencies, score) per top-ranked chunk, best first
        query_terms: Terms already in the query (never re-selected)
        max_terms: Number of expansion terms to return

    Returns:
        Up to max_terms terms, highest weight first; equal weights ordered by term

    Example:
        >>> select_expansion_terms(
        ...     [({"pod": 3, "yaml": 1}, 2.0), ({"pod": 1, "helm": 2}, 1.0)],
        ...     query_terms={"yaml"},
        ...     max_terms=2,
        ... )
        ['pod', 'helm']
    """
    if max_terms <= 0:
        return []

    weights: Dict[str, float] = {}
    for term_frequencies, score in feedback:
        for term, tf in term_frequencies.items():
            if term in query_terms:
                continue
            weights[term] = weights.get(term, 0.0) + tf * score

    ranked = sorted(
        (item for item in weights.items() if item[1] > 0),
        key=lambda item: (-item[1], item[0]),
    )
    return [term for term, _ in ranked[:max_terms]]
