"""
Query processing: normalization, synonym expansion and phrase detection.

Pipeline:
1. Terms from the tokenizer, deduplicated in first-occurrence order
2. Synonym expansion: every term that keys a synonym group adds the group
   members. Expansion augments the term list, it never replaces it
3. Phrases: each double-quoted substring that yields more than one term

Phrases are parsed and carried with the query; ranking stays bag-of-terms.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from .tokenizer import unique_terms

logger = logging.getLogger(__name__)

# Domain synonym groups (business documents: products, standards, processes)
SYNONYM_GROUPS: Dict[str, List[str]] = {
    "产品": ["商品", "物品", "制品"],
    "标准": ["规范", "准则", "要求", "规定"],
    "质量": ["品质", "质量标准"],
    "制作": ["生产", "加工", "制造"],
    "流程": ["过程", "程序", "步骤"],
}

_QUOTED = re.compile(r'"([^"]*)"')


@dataclass
class ProcessedQuery:
    original_query: str
    terms: List[str]
    expanded_terms: List[str]
    phrases: List[List[str]] = field(default_factory=list)
    use_expansion: bool = True

    @property
    def scoring_terms(self) -> List[str]:
        """Terms the ranking stages score against"""
        return self.expanded_terms if self.use_expansion else self.terms

    def with_extra_terms(self, extra: List[str]) -> "ProcessedQuery":
        """Copy of this query with additional scoring terms appended"""
        merged = list(dict.fromkeys(self.scoring_terms + list(extra)))
        return ProcessedQuery(
            original_query=self.original_query,
            terms=list(dict.fromkeys(self.terms + list(extra))),
            expanded_terms=merged,
            phrases=self.phrases,
            use_expansion=self.use_expansion,
        )


class QueryProcessor:
    """Turns raw query strings into ProcessedQuery objects"""

    def __init__(self, synonyms: Optional[Mapping[str, List[str]]] = None, expand_synonyms: bool = True):
        self.synonyms = dict(SYNONYM_GROUPS if synonyms is None else synonyms)
        self.expand_synonyms = expand_synonyms

    def process(self, query: str) -> ProcessedQuery:
        terms = unique_terms(query)
        processed = ProcessedQuery(
            original_query=query,
            terms=terms,
            expanded_terms=self.expand(terms),
            phrases=self.extract_phrases(query),
            use_expansion=self.expand_synonyms,
        )
        logger.debug(
            f"Processed query {query!r}: {len(processed.terms)} terms, "
            f"{len(processed.expanded_terms) - len(processed.terms)} synonyms, "
            f"{len(processed.phrases)} phrases"
        )
        return processed

    def expand(self, terms: List[str]) -> List[str]:
        """
        Union of terms and the synonym groups they key.

        Examples:
            >>> QueryProcessor().expand(["质量", "iso"])
            ['质量', 'iso', '品质', '质量标准']
        """
        expanded = list(terms)
        for term in terms:
            expanded.extend(self.synonyms.get(term, []))
        return list(dict.fromkeys(expanded))

    def extract_phrases(self, query: str) -> List[List[str]]:
        phrases = []
        for quoted in _QUOTED.findall(query):
            phrase_terms = unique_terms(quoted)
            if len(phrase_terms) > 1:
                phrases.append(phrase_terms)
        return phrases
