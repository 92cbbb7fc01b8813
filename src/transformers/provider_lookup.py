"""
Provider roster loading, taxonomy attachment and the one-row-per-NPI lookup
"""
import logging
from pathlib import Path
from typing import Optional

import pandas as pd

from config.settings import ColumnMapping
from src.utils.errors import FatalConfigError, InvariantViolation
from src.utils.schemas import PROVIDER_LOOKUP_COLUMNS, missing_columns

logger = logging.getLogger(__name__)

TAXONOMY_CODE_PATTERN = r"^([A-Z0-9]{10})"


def load_roster(path: Path) -> pd.DataFrame:
    """Load a provider roster (CSV or parquet) with every column as text"""
    path = Path(path)
    if not path.exists():
        raise FatalConfigError(f"Provider roster not found: {path}")

    try:
        if path.suffix == ".parquet":
            roster = pd.read_parquet(path).astype("string")
        else:
            roster = pd.read_csv(path, dtype=str)
    except (OSError, ValueError) as e:
        raise FatalConfigError(f"Failed to load provider roster {path}: {e}") from e

    if missing_columns(roster, 'roster'):
        raise FatalConfigError(f"Provider roster {path} is missing required columns")

    npi = ColumnMapping.ROSTER_NPI
    initial_rows = len(roster)
    roster[npi] = roster[npi].str.strip()
    roster = roster[roster[npi].notna() & (roster[npi] != "")].reset_index(drop=True)
    logger.info(f"Loaded {len(roster):,} roster NPIs from {path} ({initial_rows - len(roster)} without NPI)")
    return roster


def load_taxonomy_reference(path: Path) -> Optional[pd.DataFrame]:
    """NUCC taxonomy reference, or None when the file is not available"""
    path = Path(path)
    if not path.exists():
        logger.warning(f"Taxonomy reference not found: {path}")
        return None

    taxonomy_ref = pd.read_csv(path, dtype=str)
    absent = [col for col in ColumnMapping.NUCC_RENAME_DICT if col not in taxonomy_ref.columns]
    if absent:
        logger.warning(f"Taxonomy reference {path} lacks columns {absent} - taxonomy descriptions will be null")
        return None
    logger.info(f"Loaded {len(taxonomy_ref):,} taxonomy codes")
    return taxonomy_ref


def attach_taxonomy(roster: pd.DataFrame, taxonomy_ref: pd.DataFrame) -> pd.DataFrame:
    """Add NUCC taxonomy descriptions keyed on the roster's Taxonomy field"""
    if 'Taxonomy' not in roster.columns:
        logger.warning("No 'Taxonomy' column in roster - skipping taxonomy attachment")
        return roster

    # Taxonomy fields look like "261QF0400X" or "261QF0400X  12345"
    enriched = roster.drop(
        columns=[col for col in ColumnMapping.NUCC_RENAME_DICT.values() if col in roster.columns]
    )
    enriched['TaxonomyCode'] = enriched['Taxonomy'].str.extract(TAXONOMY_CODE_PATTERN, expand=False)

    missing_codes = enriched['TaxonomyCode'].isna().sum()
    if missing_codes > 0:
        logger.warning(f"  {missing_codes} NPIs have missing or invalid taxonomy codes")

    taxonomy_lookup = (
        taxonomy_ref[list(ColumnMapping.NUCC_RENAME_DICT)]
        .rename(columns=ColumnMapping.NUCC_RENAME_DICT)
        .drop_duplicates(subset='TaxonomyCode')
    )
    enriched = enriched.merge(taxonomy_lookup, on='TaxonomyCode', how='left', validate='many_to_one')

    unmatched = (enriched['TaxonomyCode'].notna() & enriched['TaxonomyDisplayName'].isna()).sum()
    if unmatched > 0:
        logger.warning(f"  {unmatched} taxonomy codes not found in reference file")

    logger.info(f"  Unique taxonomy types: {enriched['TaxonomyDisplayName'].nunique()}")
    return enriched


def normalize_address(roster: pd.DataFrame) -> pd.Series:
    """Join the location address fields with single spaces"""
    fields = [
        roster[col].fillna("").astype(str) if col in roster.columns else pd.Series("", index=roster.index)
        for col in ColumnMapping.ADDRESS_FIELDS
    ]
    joined = fields[0].str.cat(fields[1:], sep=" ")
    return joined.str.replace(r"\s+", " ", regex=True).str.strip()


def build_provider_lookup(roster: pd.DataFrame, taxonomy_ref: Optional[pd.DataFrame] = None) -> pd.DataFrame:
    """One row per NPI: Name, Address and taxonomy fields"""
    if taxonomy_ref is not None and 'TaxonomyDisplayName' not in roster.columns:
        roster = attach_taxonomy(roster, taxonomy_ref)

    lookup = roster.copy()
    lookup['Address'] = normalize_address(lookup)
    for col in PROVIDER_LOOKUP_COLUMNS:
        if col not in lookup.columns:
            logger.warning(f"Roster has no {col} column - provider {col} will be null")
            lookup[col] = pd.NA
    lookup = lookup[PROVIDER_LOOKUP_COLUMNS]

    duplicated = lookup.loc[lookup['NPI'].duplicated(), 'NPI'].unique().tolist()
    if duplicated:
        raise InvariantViolation(
            f"Provider roster lists {len(duplicated)} NPIs more than once",
            offending=duplicated
        )

    logger.info(f"Provider lookup built for {len(lookup):,} NPIs")
    return lookup.reset_index(drop=True)
