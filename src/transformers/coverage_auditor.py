"""
Coverage Auditor - how much of the claims volume resolves to a code description
"""
import duckdb
import pandas as pd
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Optional
from config.settings import ColumnMapping, CoverageConfig
from src.utils.errors import FatalConfigError

logger = logging.getLogger(__name__)

CURRENT_DICTIONARY = "current_dictionary"
QUALITY_CODEBOOK = "quality_codebook"
HISTORICAL_VINTAGE = "historical_vintage"
UNRESOLVED = "unresolved"
RESOLUTION_CATEGORIES = [CURRENT_DICTIONARY, QUALITY_CODEBOOK, HISTORICAL_VINTAGE, UNRESOLVED]


def _pct(part: float, whole: float) -> float:
    return (part / whole * 100) if whole > 0 else 0.0


def _label(value) -> str:
    return value if isinstance(value, str) else "(none)"


class CoverageAuditor:
    """Read-only coverage statistics over enriched claims and the full claims source"""

    def __init__(self,
                 current_dictionary_codes: Optional[Iterable[str]] = None,
                 codebook_codes: Optional[Iterable[str]] = None,
                 top_n: int = CoverageConfig.TOP_N):
        self.current_dictionary_codes = set(current_dictionary_codes or [])
        self.codebook_codes = set(codebook_codes or [])
        self.top_n = top_n

    # ---- Enriched claims -------------------------------------------------

    def summarize_claims(self, enriched: pd.DataFrame) -> Dict[str, Any]:
        code = ColumnMapping.CLAIM_CODE
        has_description = enriched['code_description'].notna()
        has_hedis = enriched['hedis_definition'].notna()

        unique_codes = enriched[code].nunique()
        codes_with_description = enriched.loc[has_description, code].nunique()

        stats = {
            'total_claims': len(enriched),
            'unique_codes': unique_codes,
            'codes_with_description': codes_with_description,
            'codes_with_hedis': enriched.loc[has_hedis, code].nunique(),
            'claims_with_description': int(has_description.sum()),
            'pct_codes_covered': _pct(codes_with_description, unique_codes),
            'pct_claims_covered': _pct(has_description.sum(), len(enriched)),
        }

        if ColumnMapping.CLAIM_COUNT in enriched.columns:
            claim_volume = pd.to_numeric(enriched[ColumnMapping.CLAIM_COUNT], errors='coerce').fillna(0)
            stats['claim_volume'] = float(claim_volume.sum())
            stats['claim_volume_with_description'] = float(claim_volume[has_description].sum())
            stats['pct_claim_volume_covered'] = _pct(
                stats['claim_volume_with_description'], stats['claim_volume']
            )

        return stats

    def classify_resolution(self, code: str, resolved: bool) -> str:
        if not isinstance(code, str):
            return HISTORICAL_VINTAGE if resolved else UNRESOLVED
        if code in self.current_dictionary_codes:
            return CURRENT_DICTIONARY
        if code in self.codebook_codes:
            return QUALITY_CODEBOOK
        if resolved:
            return HISTORICAL_VINTAGE
        return UNRESOLVED

    def resolution_breakdown(self, enriched: pd.DataFrame) -> pd.DataFrame:
        """Per-code resolution category with its claim-row count"""
        code = ColumnMapping.CLAIM_CODE
        per_code = (
            enriched.assign(resolved=enriched['code_description'].notna())
            .groupby(code, dropna=False)
            .agg(n_claims=('resolved', 'size'), resolved=('resolved', 'any'))
            .reset_index()
        )
        per_code['resolution'] = [
            self.classify_resolution(value, resolved)
            for value, resolved in zip(per_code[code], per_code['resolved'])
        ]
        return per_code

    def resolution_summary(self, breakdown: pd.DataFrame) -> pd.DataFrame:
        summary = (
            breakdown.groupby('resolution')
            .agg(unique_codes=('n_claims', 'size'), n_claims=('n_claims', 'sum'))
            .reindex(RESOLUTION_CATEGORIES, fill_value=0)
        )
        summary['pct_codes'] = [_pct(n, summary['unique_codes'].sum()) for n in summary['unique_codes']]
        summary['pct_claims'] = [_pct(n, summary['n_claims'].sum()) for n in summary['n_claims']]
        return summary.rename_axis('resolution').reset_index()

    def top_codes(self, enriched: pd.DataFrame, n: Optional[int] = None) -> pd.DataFrame:
        """Most frequent codes by claim rows, with their description and type"""
        n = self.top_n if n is None else n
        code = ColumnMapping.CLAIM_CODE
        counts = (
            enriched.groupby([code, 'code_description', 'code_type'], dropna=False)
            .size()
            .rename('n_claims')
            .reset_index()
            .sort_values(['n_claims', code], ascending=[False, True], ignore_index=True)
        )
        return counts.head(n)

    def top_unresolved(self, enriched: pd.DataFrame, n: Optional[int] = None) -> pd.DataFrame:
        """Most frequent codes without a description, by claim rows"""
        n = self.top_n if n is None else n
        missing = enriched[enriched['code_description'].isna()]
        counts = (
            missing.groupby(ColumnMapping.CLAIM_CODE, dropna=False)
            .size()
            .rename('n_claims')
            .reset_index()
            .sort_values(['n_claims', ColumnMapping.CLAIM_CODE], ascending=[False, True], ignore_index=True)
        )
        return counts.head(n)

    def code_type_distribution(self, enriched: pd.DataFrame) -> pd.DataFrame:
        counts = (
            enriched['code_type'].fillna("Unknown/Missing")
            .value_counts()
            .rename_axis('code_type')
            .rename('n_claims')
            .reset_index()
        )
        counts['percentage'] = counts['n_claims'] / counts['n_claims'].sum() * 100
        return counts

    def audit_enriched(self, enriched: pd.DataFrame, label: str = "roster") -> Dict[str, Any]:
        """Log the full coverage report for one enriched claims set"""
        logger.info(f"=== {label} Claims Coverage ===")
        stats = self.summarize_claims(enriched)

        logger.info(f"Total claims:             {stats['total_claims']:,}")
        logger.info(f"Unique HCPCS codes:       {stats['unique_codes']:,}")
        logger.info(f"Codes with descriptions:  {stats['codes_with_description']:,} ({stats['pct_codes_covered']:.1f}%)")
        logger.info(f"Codes with HEDIS:         {stats['codes_with_hedis']:,}")
        logger.info(f"Claims with descriptions: {stats['claims_with_description']:,} ({stats['pct_claims_covered']:.1f}%)")
        if 'claim_volume' in stats:
            logger.info(f"Claim volume covered:     {stats['pct_claim_volume_covered']:.1f}% of {stats['claim_volume']:,.0f}")

        top_codes = self.top_codes(enriched)
        logger.info(f"Top {self.top_n} most frequent HCPCS codes in {label} claims:")
        for row in top_codes.itertuples(index=False):
            logger.info(f"  {_label(row[0])}: {row.n_claims:,}  [{_label(row.code_type)}] {_label(row.code_description)}")

        summary = self.resolution_summary(self.resolution_breakdown(enriched))
        logger.info("Resolution by source:")
        for row in summary.itertuples(index=False):
            logger.info(
                f"  {row.resolution:<20} {row.unique_codes:>6,} codes ({row.pct_codes:.1f}%)  "
                f"{row.n_claims:>10,} claims ({row.pct_claims:.1f}%)"
            )

        logger.info("Claims by code type:")
        for row in self.code_type_distribution(enriched).itertuples(index=False):
            logger.info(f"  {row.code_type:<16} {row.n_claims:>10,} ({row.percentage:.1f}%)")

        unresolved = self.top_unresolved(enriched)
        if unresolved.empty:
            logger.info("All codes have descriptions!")
        else:
            logger.info(f"Codes without descriptions (top {self.top_n}):")
            for row in unresolved.itertuples(index=False):
                logger.info(f"  {_label(row[0])}: {row[1]:,}")

        stats['resolution_summary'] = summary
        stats['top_codes'] = top_codes
        stats['top_unresolved'] = unresolved
        return stats

    # ---- Full claims source ----------------------------------------------

    @staticmethod
    def scan_code_volume(claims_path: Path) -> pd.DataFrame:
        """Distinct codes in the full claims source with their row counts.

        Rows without a code form one group with a null `code`, so claim-volume
        totals cover every row.
        """
        claims_path = Path(claims_path)
        if not claims_path.exists():
            raise FatalConfigError(f"Claims source not found: {claims_path}")

        code = ColumnMapping.CLAIM_CODE
        source = str(claims_path).replace("'", "''")
        query = f"""
        SELECT
            CAST({code} AS VARCHAR) AS code,
            COUNT(*) AS n_claims
        FROM read_parquet('{source}')
        GROUP BY 1
        ORDER BY 1 NULLS LAST
        """

        logger.info("Extracting unique HCPCS codes from claims source...")
        conn = duckdb.connect()
        try:
            code_volume = conn.execute(query).df()
        finally:
            conn.close()

        logger.info(f"Found {code_volume['code'].notna().sum():,} unique HCPCS codes")
        return code_volume

    def reference_coverage(self, code_volume: pd.DataFrame, lookup_codes: Iterable[str]) -> pd.DataFrame:
        """Per distinct code: which reference sources know it"""
        lookup_codes = set(lookup_codes)
        coverage = code_volume[['code', 'n_claims']].copy()
        coverage['in_current_dictionary'] = coverage['code'].isin(self.current_dictionary_codes)
        coverage['in_quality_codebook'] = coverage['code'].isin(self.codebook_codes)
        coverage['in_either'] = coverage['in_current_dictionary'] | coverage['in_quality_codebook']
        coverage['in_lookup'] = coverage['code'].isin(lookup_codes)
        return coverage

    def volume_coverage(self, coverage: pd.DataFrame) -> Dict[str, Any]:
        total_claims = int(coverage['n_claims'].sum())
        claims_with_desc = int(coverage.loc[coverage['in_lookup'], 'n_claims'].sum())
        pct_covered = _pct(claims_with_desc, total_claims)
        return {
            'unique_codes': int(coverage['code'].notna().sum()),
            'claims_without_code': int(coverage.loc[coverage['code'].isna(), 'n_claims'].sum()),
            'codes_in_current_dictionary': int(coverage['in_current_dictionary'].sum()),
            'codes_in_quality_codebook': int(coverage['in_quality_codebook'].sum()),
            'codes_in_either': int(coverage['in_either'].sum()),
            'codes_in_lookup': int(coverage['in_lookup'].sum()),
            'total_claims': total_claims,
            'claims_with_description': claims_with_desc,
            'pct_claims_covered': pct_covered,
            'verdict': self.verdict(pct_covered),
        }

    def top_missing_from_lookup(self, coverage: pd.DataFrame, n: Optional[int] = None) -> pd.DataFrame:
        n = self.top_n if n is None else n
        missing = coverage[~coverage['in_lookup']]
        return missing.sort_values(['n_claims', 'code'], ascending=[False, True], ignore_index=True)[['code', 'n_claims']].head(n)

    def top_resolved_from_lookup(self, coverage: pd.DataFrame, code_lookup: pd.DataFrame,
                                 n: Optional[int] = None) -> pd.DataFrame:
        """Most frequent codes that have a lookup description, with that description"""
        n = self.top_n if n is None else n
        resolved = coverage[coverage['in_lookup']]
        top = resolved.sort_values(['n_claims', 'code'], ascending=[False, True], ignore_index=True)[['code', 'n_claims']].head(n)
        descriptions = code_lookup[['code', 'description']].drop_duplicates(subset='code')
        return top.merge(descriptions, on='code', how='left')

    @staticmethod
    def verdict(pct_covered: float) -> str:
        if pct_covered >= CoverageConfig.EXCELLENT_PCT:
            return "EXCELLENT"
        if pct_covered >= CoverageConfig.GOOD_PCT:
            return "GOOD"
        return "NEEDS IMPROVEMENT"

    def audit_source(self, coverage: pd.DataFrame,
                     code_lookup: Optional[pd.DataFrame] = None) -> Dict[str, Any]:
        """Log reference and volume coverage for the full claims source"""
        stats = self.volume_coverage(coverage)
        unique_codes = stats['unique_codes']

        logger.info("Coverage vs reference files (unique codes):")
        logger.info(f"  In current HCPCS: {stats['codes_in_current_dictionary']:,} / {unique_codes:,} ({_pct(stats['codes_in_current_dictionary'], unique_codes):.1f}%)")
        logger.info(f"  In HEDIS:         {stats['codes_in_quality_codebook']:,} / {unique_codes:,} ({_pct(stats['codes_in_quality_codebook'], unique_codes):.1f}%)")
        logger.info(f"  In either source: {stats['codes_in_either']:,} / {unique_codes:,} ({_pct(stats['codes_in_either'], unique_codes):.1f}%)")
        logger.info(f"  In lookup:        {stats['codes_in_lookup']:,} / {unique_codes:,} ({_pct(stats['codes_in_lookup'], unique_codes):.1f}%)")

        logger.info("Coverage by claim volume:")
        logger.info(f"  Total claims:             {stats['total_claims']:,}")
        logger.info(f"  Claims with descriptions: {stats['claims_with_description']:,}")
        logger.info(f"  Percentage covered:       {stats['pct_claims_covered']:.1f}%")
        if stats['claims_without_code']:
            logger.info(f"  Claims without a code:    {stats['claims_without_code']:,} (counted as not covered)")

        logger.info(f"Top {self.top_n} most frequent codes WITHOUT descriptions:")
        top_missing = self.top_missing_from_lookup(coverage)
        for row in top_missing.itertuples(index=False):
            logger.info(f"  {_label(row.code)}: {row.n_claims:,}")
        stats['top_missing'] = top_missing

        if code_lookup is not None:
            top_resolved = self.top_resolved_from_lookup(coverage, code_lookup)
            logger.info(f"Top {self.top_n} most frequent codes WITH descriptions:")
            for row in top_resolved.itertuples(index=False):
                logger.info(f"  {row.code}: {row.n_claims:,}  {_label(row.description)}")
            stats['top_resolved'] = top_resolved

        if stats['verdict'] == "EXCELLENT":
            logger.info(f"EXCELLENT: {stats['pct_claims_covered']:.1f}% of claims have descriptions.")
        elif stats['verdict'] == "GOOD":
            logger.info(f"GOOD: {stats['pct_claims_covered']:.1f}% of claims have descriptions. Consider reviewing the top missing codes.")
        else:
            logger.warning(
                f"NEEDS IMPROVEMENT: Only {stats['pct_claims_covered']:.1f}% of claims have descriptions. "
                "Review the top missing codes - they may need an additional reference source."
            )
        return stats
