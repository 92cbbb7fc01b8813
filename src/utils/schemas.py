"""
Column sets for the pipeline's tables
"""
import logging
from typing import List

import pandas as pd

from config.settings import ValidationConfig

logger = logging.getLogger(__name__)

CODE_RECORD_COLUMNS = ['code', 'description', 'source', 'year']
CANONICAL_CODE_COLUMNS = ['code', 'description', 'code_type', 'source', 'year']
VALUE_SET_COLUMNS = ['code', 'hedis_definition', 'code_value_sets']
PROVIDER_LOOKUP_COLUMNS = ['NPI', 'Name', 'Address', 'Taxonomy', 'TaxonomyCode', 'TaxonomyDisplayName']

CPT = "CPT"
HCPCS_LEVEL_II = "HCPCS_Level_II"
OTHER = "Other"
CODE_TYPES = [CPT, HCPCS_LEVEL_II, OTHER]


def empty_code_records() -> pd.DataFrame:
    return pd.DataFrame({col: pd.Series(dtype=str) for col in CODE_RECORD_COLUMNS})


def missing_columns(df: pd.DataFrame, table: str) -> List[str]:
    """Return required columns for `table` that are absent from df"""
    required = ValidationConfig.REQUIRED_COLUMNS[table]
    missing = [col for col in required if col not in df.columns]
    if missing:
        logger.warning(f"Missing required columns in {table}: {missing}")
    return missing


def as_key(series: pd.Series) -> pd.Series:
    """Normalize a join key column to pandas string dtype"""
    if pd.api.types.is_float_dtype(series):
        series = series.astype("Int64")
    return series.astype("string").str.strip()
