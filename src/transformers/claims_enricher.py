"""
Claims Enricher - joins code descriptions, HEDIS value sets and provider attributes onto claims
"""
import pandas as pd
import logging
from pathlib import Path
from typing import Iterable, Iterator, Optional
from config.settings import CHUNK_SIZE, ColumnMapping
from src.extractors.parquet_extractor import ClaimsExtractor
from src.utils.chunk_processor import ChunkProcessor
from src.utils.errors import FatalConfigError, InvariantViolation
from src.utils.schemas import VALUE_SET_COLUMNS, as_key, missing_columns

logger = logging.getLogger(__name__)


def load_code_lookup(path: Path) -> pd.DataFrame:
    """Load the comprehensive code lookup written by the consolidation stage"""
    path = Path(path)
    if not path.exists():
        raise FatalConfigError(f"Code lookup not found: {path} - run build_code_lookup.py first")
    try:
        lookup = pd.read_csv(path, dtype=str, keep_default_na=False, na_values=[""])
    except (OSError, ValueError) as e:
        raise FatalConfigError(f"Failed to load code lookup {path}: {e}") from e

    if missing_columns(lookup, 'lookup'):
        raise FatalConfigError(f"Code lookup {path} is missing required columns")

    logger.info(f"Loaded {len(lookup):,} unique HCPCS/CPT codes")
    return lookup


class ClaimsEnricher:
    """Left-join code and dual-role provider attributes onto roster-filtered claims"""

    def __init__(self,
                 code_lookup: pd.DataFrame,
                 provider_lookup: pd.DataFrame,
                 value_sets: Optional[pd.DataFrame] = None,
                 chunk_size: int = CHUNK_SIZE):
        self.chunk_processor = ChunkProcessor(chunk_size)
        self.provider_lookup = provider_lookup
        self.code_attributes = self._prepare_code_attributes(code_lookup)
        self.value_set_attributes = self._prepare_value_sets(value_sets)
        self.servicing_attributes = self._prepare_provider_attributes(
            provider_lookup, ColumnMapping.SERVICING_NPI, ColumnMapping.SERVICING_PREFIX
        )
        self.billing_attributes = self._prepare_provider_attributes(
            provider_lookup, ColumnMapping.BILLING_NPI, ColumnMapping.BILLING_PREFIX
        )

    @property
    def roster_npis(self) -> list:
        return self.provider_lookup['NPI'].dropna().astype(str).tolist()

    @staticmethod
    def _keyed_attributes(df: pd.DataFrame, key: str) -> pd.DataFrame:
        """Normalize the join key, drop null keys and require the rest to be unique"""
        df = df.copy()
        df[key] = as_key(df[key])
        df = df[df[key].notna() & (df[key] != "")]

        duplicated = df.loc[df[key].duplicated(), key].unique().tolist()
        if duplicated:
            raise InvariantViolation(
                f"Join key {key} is not unique in lookup table ({len(duplicated)} duplicated)",
                offending=[str(value) for value in duplicated]
            )
        return df

    def _prepare_code_attributes(self, code_lookup: pd.DataFrame) -> pd.DataFrame:
        code_attributes = code_lookup[['code'] + list(ColumnMapping.CODE_RENAME_DICT)].rename(
            columns={'code': ColumnMapping.CLAIM_CODE, **ColumnMapping.CODE_RENAME_DICT}
        )
        return self._keyed_attributes(code_attributes, ColumnMapping.CLAIM_CODE)

    def _prepare_value_sets(self, value_sets: Optional[pd.DataFrame]) -> pd.DataFrame:
        if value_sets is None:
            value_sets = pd.DataFrame(columns=VALUE_SET_COLUMNS, dtype="string")
        value_set_attributes = value_sets[VALUE_SET_COLUMNS].rename(columns={'code': ColumnMapping.CLAIM_CODE})
        return self._keyed_attributes(value_set_attributes, ColumnMapping.CLAIM_CODE)

    def _prepare_provider_attributes(self, provider_lookup: pd.DataFrame, key: str, prefix: str) -> pd.DataFrame:
        renames = {col: f"{prefix}{suffix}" for col, suffix in ColumnMapping.PROVIDER_RENAME_DICT.items()}
        renames['NPI'] = key
        attributes = provider_lookup[list(renames)].rename(columns=renames)
        return self._keyed_attributes(attributes, key)

    @staticmethod
    def _left_join(chunk: pd.DataFrame, attributes: pd.DataFrame, key: str, label: str) -> pd.DataFrame:
        """Many-to-one left join that refuses to change the row count"""
        merged = chunk.merge(attributes, on=key, how='left')
        if len(merged) != len(chunk):
            duplicated = attributes.loc[attributes[key].duplicated(), key].unique().tolist()
            logger.error(
                f"{label} join changed row count {len(chunk):,} -> {len(merged):,}; "
                f"duplicated keys: {duplicated[:10]}"
            )
            raise InvariantViolation(
                f"{label} join fanned out ({len(chunk)} -> {len(merged)} rows)",
                offending=[str(value) for value in duplicated]
            )
        return merged

    def enrich_chunk(self, chunk: pd.DataFrame) -> pd.DataFrame:
        enriched = self._left_join(chunk, self.servicing_attributes, ColumnMapping.SERVICING_NPI, "Servicing provider")
        enriched = self._left_join(enriched, self.billing_attributes, ColumnMapping.BILLING_NPI, "Billing provider")
        enriched = self._left_join(enriched, self.code_attributes, ColumnMapping.CLAIM_CODE, "Code description")
        enriched = self._left_join(enriched, self.value_set_attributes, ColumnMapping.CLAIM_CODE, "HEDIS value set")
        return enriched

    def enrich(self, chunks: Iterator[pd.DataFrame],
               empty: Optional[pd.DataFrame] = None) -> pd.DataFrame:
        """Enrich every chunk and combine; output rows == input rows.

        `empty` (zero standardized claims) keeps the enriched columns when no
        claim matches the roster.
        """
        input_rows = 0

        def enrich_counted(chunk: pd.DataFrame) -> pd.DataFrame:
            nonlocal input_rows
            input_rows += len(chunk)
            return self.enrich_chunk(chunk)

        enriched = self.chunk_processor.process_chunks(
            chunks, enrich_counted,
            empty=self.enrich_chunk(empty) if empty is not None else None
        )

        if len(enriched) != input_rows:
            raise InvariantViolation(
                f"Enrichment produced {len(enriched):,} rows from {input_rows:,} filtered claims"
            )

        logger.info(f"Enriched {len(enriched):,} claims with:")
        logger.info("  - Comprehensive HCPCS/CPT descriptions")
        logger.info("  - HEDIS quality measure definitions and value sets")
        logger.info("  - Provider taxonomy descriptions for billing and servicing providers")
        return enriched

    def enrich_from_source(self, extractor: ClaimsExtractor,
                           roster_npis: Optional[Iterable[str]] = None) -> pd.DataFrame:
        """Filter the claims source to the roster at scan time, then enrich"""
        roster_npis = self.roster_npis if roster_npis is None else list(roster_npis)
        if not roster_npis:
            raise FatalConfigError("Provider roster is empty - cannot select claims of interest")

        chunks = extractor.extract_claims_for_roster(roster_npis)
        return self.enrich(chunks, empty=extractor.empty_claims())
