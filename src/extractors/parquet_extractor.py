"""
Extract roster-matched claims from the claims parquet with scan-time filtering
"""
import pandas as pd
import logging
from pathlib import Path
from typing import Iterable, Iterator, List, Optional
import pyarrow as pa
import pyarrow.dataset as ds
from config.settings import CHUNK_SIZE, ColumnMapping, FilePaths
from src.utils.chunk_processor import ChunkProcessor
from src.utils.errors import FatalConfigError
from src.utils.schemas import as_key, missing_columns

logger = logging.getLogger(__name__)


def derive_year_month(month: pd.Series) -> pd.Series:
    """Parse a packed year-month ("2023-01", "202301", or a date) to the first of the month"""
    if pd.api.types.is_datetime64_any_dtype(month):
        return month.dt.to_period("M").dt.to_timestamp()
    digits = month.astype("string").str.replace(r"\D", "", regex=True).str[:6]
    return pd.to_datetime(digits, format="%Y%m", errors="coerce")


def roster_match(field: pa.Field, npis: Iterable[str]) -> ds.Expression:
    """`field in npis`, compared in a type wide enough for a 10-digit NPI"""
    npis = sorted(set(npis))
    value_type = field.type.value_type if pa.types.is_dictionary(field.type) else field.type
    column = ds.field(field.name)

    if pa.types.is_integer(value_type):
        values = pa.array([int(npi) for npi in npis if npi.isdigit()], type=pa.int64())
        return column.cast(pa.int64()).isin(values)
    if field.type == pa.string():
        return column.isin(pa.array(npis, type=pa.string()))
    return column.cast(pa.string()).isin(pa.array(npis, type=pa.string()))


class ClaimsExtractor:
    """Stream claims whose billing or servicing NPI is on the roster"""

    def __init__(self, claims_path: Path = FilePaths.CLAIMS_PARQUET, chunk_size: int = CHUNK_SIZE):
        self.claims_path = Path(claims_path)
        self.chunk_processor = ChunkProcessor(chunk_size)

    def open_dataset(self) -> ds.Dataset:
        if not self.claims_path.exists():
            raise FatalConfigError(f"Claims source not found: {self.claims_path}")
        try:
            dataset = ds.dataset(str(self.claims_path), format="parquet")
        except (OSError, pa.ArrowInvalid) as e:
            raise FatalConfigError(f"Failed to open claims source {self.claims_path}: {e}") from e

        missing_cols = missing_columns(pd.DataFrame(columns=dataset.schema.names), 'claims')
        if missing_cols:
            raise FatalConfigError(f"Claims source {self.claims_path} is missing columns {missing_cols}")
        return dataset

    def roster_filter(self, dataset: ds.Dataset, roster_npis: Iterable[str]) -> ds.Expression:
        """billing NPI in roster OR servicing NPI in roster"""
        roster_npis = list(roster_npis)
        return (
            roster_match(dataset.schema.field(ColumnMapping.BILLING_NPI), roster_npis)
            | roster_match(dataset.schema.field(ColumnMapping.SERVICING_NPI), roster_npis)
        )

    def extract_claims_for_roster(self, roster_npis: Iterable[str],
                                  columns: Optional[List[str]] = None) -> Iterator[pd.DataFrame]:
        """Filtered claim chunks with year_month derived and NPI/code keys as strings"""
        dataset = self.open_dataset()
        roster_npis = list(roster_npis)
        logger.info(f"Filtering claims for {len(roster_npis):,} roster NPIs...")

        chunks = self.chunk_processor.scan_dataset_chunks(
            dataset,
            filter_expression=self.roster_filter(dataset, roster_npis),
            columns=columns
        )
        for chunk in chunks:
            yield self.standardize_claims(chunk)

    def empty_claims(self, columns: Optional[List[str]] = None) -> pd.DataFrame:
        """Zero standardized claims carrying the source schema's columns"""
        empty = self.open_dataset().schema.empty_table()
        if columns is not None:
            empty = empty.select(columns)
        return self.standardize_claims(empty.to_pandas())

    @staticmethod
    def standardize_claims(chunk: pd.DataFrame) -> pd.DataFrame:
        chunk = chunk.copy()
        for col in [ColumnMapping.BILLING_NPI, ColumnMapping.SERVICING_NPI, ColumnMapping.CLAIM_CODE]:
            chunk[col] = as_key(chunk[col])

        # Replace the packed month with a typed month column in the same position
        position = chunk.columns.get_loc(ColumnMapping.CLAIM_MONTH)
        year_month = derive_year_month(chunk[ColumnMapping.CLAIM_MONTH])
        unparsed = year_month.isna() & chunk[ColumnMapping.CLAIM_MONTH].notna()
        if unparsed.any():
            logger.warning(f"{unparsed.sum()} claims have an unparseable {ColumnMapping.CLAIM_MONTH}")
        chunk = chunk.drop(columns=[ColumnMapping.CLAIM_MONTH])
        chunk.insert(position, ColumnMapping.YEAR_MONTH, year_month)
        return chunk
