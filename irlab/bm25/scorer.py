"""
BM25 scorer with corpus-level IDF.

BM25 (Best Match 25) is a probabilistic ranking function used for information retrieval.
The same function scores both index tiers: documents (df = documents containing
the term, N = document count) and chunks (df = chunks containing the term,
N = chunk count).

Formula:
    idf = ln((N - df + 0.5) / (df + 0.5))
    tf' = (tf × (k1 + 1)) / (tf + k1 × (1 - b + b × dl/avgdl))
    score(term, unit) = idf × tf' × w

Where:
    tf = term frequency in the unit (document or chunk)
    dl = unit length in estimated tokens
    avgdl = average unit length of the tier
    df, N = tier-level document frequency and unit count
    w = field weight (title 2.0, content 1.0, table header 1.5)
    k1 = term frequency saturation parameter (default: 1.2)
    b = length normalization parameter (default: 0.75)

idf turns negative for terms present in more than half of the tier. That is
plain BM25 behaviour and is not clamped.
"""

import math
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

from ..config import BM25Parameters


@dataclass(frozen=True)
class TermScore:
    """BM25 breakdown of a single query term against a single unit"""
    term: str
    idf: float
    tf: int
    tf_component: float
    length_norm: float
    field_weight: float
    score: float


def bm25_term_score(
    tf: float,
    length: float,
    avg_length: float,
    df: int,
    n: int,
    weight: float = 1.0,
    k1: float = 1.2,
    b: float = 0.75,
) -> float:
    """
    Pure BM25 score of one term in one unit.

    Returns 0.0 when the term does not occur (tf <= 0), never -inf.
    An average length of zero disables length normalization.

    Example:
        >>> round(bm25_term_score(tf=3, length=500, avg_length=500, df=1, n=10), 4)
        2.9006
    """
    if tf <= 0:
        return 0.0
    idf = math.log((n - df + 0.5) / (df + 0.5))
    length_ratio = length / avg_length if avg_length > 0 else 1.0
    tf_component = (tf * (k1 + 1)) / (tf + k1 * (1 - b + b * length_ratio))
    return idf * tf_component * weight


class BM25Scorer:
    """
    Stateless BM25 scorer bound to a parameter set.

    Holds no corpus state: every call receives the tier statistics it needs.
    """

    def __init__(self, params: Optional[BM25Parameters] = None):
        self.params = params or BM25Parameters()

    @property
    def k1(self) -> float:
        return self.params.k1

    @property
    def b(self) -> float:
        return self.params.b

    def idf(self, df: int, n: int) -> float:
        return math.log((n - df + 0.5) / (df + 0.5))

    def term_score(
        self,
        term: str,
        tf: int,
        length: float,
        avg_length: float,
        df: int,
        n: int,
        field_weight: float = 1.0,
    ) -> TermScore:
        """
        Score one term and keep every intermediate value for explanations.

        Args:
            term: Query term
            tf: Term frequency in the unit
            length: Unit length (estimated tokens)
            avg_length: Tier average length
            df: Units in the tier containing the term
            n: Units in the tier
            field_weight: Multiplier for the field the term was found in
        """
        if tf <= 0:
            return TermScore(term, 0.0, 0, 0.0, 1.0, field_weight, 0.0)

        idf = self.idf(df, n)
        length_ratio = length / avg_length if avg_length > 0 else 1.0
        length_norm = 1 - self.b + self.b * length_ratio
        tf_component = (tf * (self.k1 + 1)) / (tf + self.k1 * length_norm)

        return TermScore(
            term=term,
            idf=idf,
            tf=tf,
            tf_component=tf_component,
            length_norm=length_norm,
            field_weight=field_weight,
            score=idf * tf_component * field_weight,
        )

    def score(
        self,
        query_terms: Iterable[str],
        term_frequencies: Mapping[str, int],
        length: float,
        avg_length: float,
        doc_freqs: Mapping[str, int],
        n: int,
        field_weight: float = 1.0,
    ) -> float:
        """
        Sum of per-term scores over terms present in both query and unit.

        Args:
            query_terms: Normalized query terms
            term_frequencies: Term frequency map of the unit {term: count}
            length: Unit length
            avg_length: Tier average length
            doc_freqs: Tier-level frequency of each term {term: df}
            n: Units in the tier
            field_weight: Multiplier applied to every term

        Returns:
            BM25 score, 0.0 when nothing matches
        """
        total = 0.0
        for term in query_terms:
            tf = term_frequencies.get(term, 0)
            if tf <= 0 or term not in doc_freqs:
                continue
            total += self.term_score(term, tf, length, avg_length, doc_freqs[term], n, field_weight).score
        return total
