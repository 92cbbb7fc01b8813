"""
Consolidate procedure-code descriptions from every reference source into one lookup
"""
import logging
import re
from functools import reduce
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import pandas as pd

from config.settings import PriorityConfig
from src.utils.errors import InvariantViolation, MissingSourceError
from src.utils.schemas import (
    CANONICAL_CODE_COLUMNS, CODE_TYPES, CPT, HCPCS_LEVEL_II, OTHER, empty_code_records
)

logger = logging.getLogger(__name__)

_CPT_PATTERN = re.compile(r"^[0-9]{5}$")
_LEVEL_II_PATTERN = re.compile(r"^[A-Z]")

# Priority tiers, higher wins
OFFICIAL_TIER = 3
VINTAGE_TIER = 2
DEFAULT_TIER = 1


def classify_code_type(code) -> str:
    """
    Classify a procedure code by its lexical form.

    Exactly five ASCII digits is CPT, a leading uppercase letter is HCPCS
    Level II, anything else (including missing values) is Other.
    """
    if not isinstance(code, str):
        return OTHER
    if _CPT_PATTERN.match(code):
        return CPT
    if _LEVEL_II_PATTERN.match(code):
        return HCPCS_LEVEL_II
    return OTHER


class PriorityPolicy:
    """Which (source, code_type) combinations win when sources disagree"""

    def __init__(self,
                 official_sources: Optional[Iterable[str]] = None,
                 official_code_types: Optional[Iterable[str]] = None,
                 vintage_source_prefixes: Optional[Iterable[str]] = None):
        self.official_sources = frozenset(
            PriorityConfig.OFFICIAL_SOURCES if official_sources is None else official_sources
        )
        self.official_code_types = frozenset(
            PriorityConfig.OFFICIAL_CODE_TYPES if official_code_types is None else official_code_types
        )
        self.vintage_source_prefixes = tuple(
            PriorityConfig.VINTAGE_SOURCE_PREFIXES if vintage_source_prefixes is None
            else vintage_source_prefixes
        )

    def tier(self, source: str, code_type: str) -> int:
        if source in self.official_sources and code_type in self.official_code_types:
            return OFFICIAL_TIER
        if source.startswith(self.vintage_source_prefixes):
            return VINTAGE_TIER
        return DEFAULT_TIER

    def assign(self, records: pd.DataFrame) -> pd.DataFrame:
        """Add priority_tier and priority_vintage columns"""
        records = records.copy()
        records['priority_tier'] = [
            self.tier(source, code_type)
            for source, code_type in zip(records['source'], records['code_type'])
        ]
        years = pd.to_numeric(records['year'], errors='coerce').fillna(0).astype(int)
        # Vintage only orders candidates inside the vintage tier
        records['priority_vintage'] = years.where(records['priority_tier'] == VINTAGE_TIER, 0)
        return records


class CodeConsolidator:
    """Merge CodeRecord streams into one CanonicalCode row per code"""

    def __init__(self, policy: Optional[PriorityPolicy] = None):
        self.policy = policy or PriorityPolicy()

    def collect_sources(self, readers: List[Tuple[str, Callable[[], pd.DataFrame]]]) -> List[pd.DataFrame]:
        """Run each source reader, skipping sources that are missing or unreadable"""
        streams = []
        for label, read in readers:
            try:
                streams.append(read())
            except MissingSourceError as e:
                logger.warning(f"Skipping source {label}: {e}")

        logger.info(f"Collected {len(streams)}/{len(readers)} reference sources")
        return streams

    def consolidate(self, streams: List[pd.DataFrame]) -> pd.DataFrame:
        """Keep the single highest-priority record for every distinct code"""
        logger.info("=== Consolidating codes ===")

        all_codes = reduce(
            lambda acc, stream: pd.concat([acc, stream], ignore_index=True),
            streams,
            empty_code_records()
        )
        all_codes = all_codes[all_codes['code'].notna() & (all_codes['code'] != "")]
        logger.info(f"Candidate records: {len(all_codes):,}")

        all_codes = all_codes.assign(code_type=all_codes['code'].map(classify_code_type))
        ranked = self.policy.assign(all_codes)

        # Same-source duplicates fall back to source/description order
        ranked = ranked.sort_values(
            ['code', 'priority_tier', 'priority_vintage', 'source', 'description'],
            ascending=[True, False, False, True, True],
            kind='mergesort'
        )
        consolidated = ranked.drop_duplicates(subset='code', keep='first')
        consolidated = consolidated[CANONICAL_CODE_COLUMNS].reset_index(drop=True)

        if consolidated['code'].duplicated().any():
            raise InvariantViolation("Consolidated lookup contains duplicate codes")

        self.log_breakdown(consolidated)
        return consolidated

    def build_lookup(self, readers: List[Tuple[str, Callable[[], pd.DataFrame]]]) -> pd.DataFrame:
        return self.consolidate(self.collect_sources(readers))

    @staticmethod
    def type_breakdown(consolidated: pd.DataFrame) -> Dict[str, int]:
        counts = consolidated['code_type'].value_counts()
        return {code_type: int(counts.get(code_type, 0)) for code_type in CODE_TYPES}

    def log_breakdown(self, consolidated: pd.DataFrame) -> None:
        breakdown = self.type_breakdown(consolidated)
        logger.info(f"Total unique codes: {len(consolidated):,}")
        logger.info(f"  CPT codes:       {breakdown[CPT]:,}")
        logger.info(f"  HCPCS Level II:  {breakdown[HCPCS_LEVEL_II]:,}")
        logger.info(f"  Other:           {breakdown[OTHER]:,}")
