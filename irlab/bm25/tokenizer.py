"""
Term extraction for BM25 indexing and querying.

Extraction pipeline:
1. Lowercase conversion
2. Replace everything except CJK ideographs, Latin letters, digits and
   whitespace with a space; collapse whitespace
3. Latin words of 2+ letters, stopwords removed
4. Digit runs kept verbatim ("2024", "15")
5. CJK residue (every non-CJK character removed) expanded into overlapping
   character n-grams:
   - unigrams and bigrams, stopwords removed
   - trigrams, not filtered
   - compound grams (two adjacent bigrams, 4 characters), not filtered

CJK text has no whitespace word boundaries, so overlapping n-grams stand in
for a word segmenter. Three- and four-character technical compounds
("质量标准", "标准流程") are often exactly the term a user searches for,
and stopword filtering at that width only produces false negatives.
"""

import re
from collections import Counter
from typing import Dict, Iterable, List, Set

# English + Chinese stopwords
STOPWORDS = frozenset([
    # English
    'the', 'a', 'an', 'and', 'or', 'but', 'in', 'on', 'at', 'to', 'for',
    'of', 'with', 'by', 'is', 'are', 'was', 'were', 'be', 'been', 'have',
    'has', 'had', 'do', 'does', 'did', 'will', 'would', 'should', 'could',
    'can', 'may', 'might', 'must', 'shall',
    # Chinese
    '的', '了', '在', '是', '我', '有', '和', '就', '不', '人', '都', '一',
    '一个', '上', '也', '很', '到', '说', '要', '去', '你', '会', '着',
    '没有', '看', '好', '自己', '这',
])

_NON_INDEXABLE = re.compile(r'[^\u4e00-\u9fa5a-z0-9\s]')
_WHITESPACE = re.compile(r'\s+')
_LATIN_WORD = re.compile(r'[a-z]{2,}')
_DIGIT_RUN = re.compile(r'[0-9]+')
_NON_CJK = re.compile(r'[^\u4e00-\u9fa5]')
_CJK = re.compile(r'[\u4e00-\u9fa5]')
_LATIN_LETTER = re.compile(r'[A-Za-z]')


def normalize(text: str) -> str:
    """Lowercase and reduce text to CJK, Latin letters, digits and single spaces"""
    if not text:
        return ""
    normalized = _NON_INDEXABLE.sub(' ', text.lower())
    return _WHITESPACE.sub(' ', normalized).strip()


def _char_ngrams(residue: str, width: int) -> List[str]:
    return [residue[i:i + width] for i in range(len(residue) - width + 1)]


def term_stream(text: str) -> List[str]:
    """
    Extract every term occurrence, duplicates included.

    Args:
        text: Raw text (document chunk or query)

    Returns:
        Terms in extraction order: Latin words, digit runs, CJK unigrams,
        bigrams, trigrams, compounds

    Examples:
        >>> term_stream("Quality 2024 质量标准")
        ['quality', '2024', '质', '量', '标', '准', '质量', '量标', '标准',
         '质量标', '量标准', '质量标准']

        >>> term_stream("   ")
        []
    """
    normalized = normalize(text)
    if not normalized:
        return []

    terms = [w for w in _LATIN_WORD.findall(normalized) if w not in STOPWORDS]
    terms.extend(_DIGIT_RUN.findall(normalized))

    residue = _NON_CJK.sub('', normalized)
    if residue:
        terms.extend(c for c in residue if c not in STOPWORDS)
        terms.extend(g for g in _char_ngrams(residue, 2) if g not in STOPWORDS)
        terms.extend(_char_ngrams(residue, 3))
        terms.extend(_char_ngrams(residue, 4))

    return terms


def extract_terms(text: str) -> Set[str]:
    """Deduplicated set of terms in text"""
    return set(term_stream(text))


def unique_terms(text: str) -> List[str]:
    """Deduplicated terms in first-occurrence order (stable for queries)"""
    return list(dict.fromkeys(term_stream(text)))


def term_frequencies(terms: Iterable[str]) -> Dict[str, int]:
    """
    Count occurrences in a (non-deduplicated) term stream.

    Examples:
        >>> term_frequencies(["pod", "yaml", "pod"])
        {'pod': 2, 'yaml': 1}
    """
    return dict(Counter(terms))


def detect_language(text: str) -> str:
    """
    Rough language tag: "zh-cn" when CJK ideographs make up at least 30%
    of the letters, otherwise "en".
    """
    cjk = len(_CJK.findall(text or ""))
    latin = len(_LATIN_LETTER.findall(text or ""))
    if cjk and cjk >= 0.3 * (cjk + latin):
        return "zh-cn"
    return "en"
