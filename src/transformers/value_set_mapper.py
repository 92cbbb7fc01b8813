"""
Map codes to their HEDIS definition and value sets
"""
import logging
from typing import List, Optional

import pandas as pd

from config.settings import ReferenceConfig
from src.utils.errors import InvariantViolation
from src.utils.schemas import VALUE_SET_COLUMNS

logger = logging.getLogger(__name__)


def join_value_sets(names: pd.Series, separator: str = ReferenceConfig.VALUE_SET_SEPARATOR) -> str:
    """Unique names in first-seen order, joined by separator"""
    return separator.join(dict.fromkeys(names))


def split_value_sets(value_sets: Optional[str], separator: str = ReferenceConfig.VALUE_SET_SEPARATOR) -> List[str]:
    if not isinstance(value_sets, str) or value_sets == "":
        return []
    return value_sets.split(separator)


class ValueSetMapper:
    """Collapse the codebook's code/value-set pairs to one row per code"""

    def __init__(self, code_systems: Optional[List[str]] = None,
                 separator: str = ReferenceConfig.VALUE_SET_SEPARATOR):
        self.code_systems = code_systems or ReferenceConfig.VALUE_SET_CODE_SYSTEMS
        self.separator = separator

    def build_mapping(self, codebook: pd.DataFrame) -> pd.DataFrame:
        logger.info("Building code -> value set mapping...")

        hedis = codebook[codebook[ReferenceConfig.HEDIS_CODE_SYSTEM_COL].isin(self.code_systems)]
        hedis = hedis.rename(columns={
            ReferenceConfig.HEDIS_VALUE_SET_COL: 'value_set',
            ReferenceConfig.HEDIS_CODE_COL: 'code',
            ReferenceConfig.HEDIS_DEFINITION_COL: 'hedis_definition'
        })
        hedis = hedis[hedis['code'].notna() & (hedis['code'].astype(str).str.strip() != "")]
        logger.info(f"  {len(hedis):,} codebook rows in code systems {self.code_systems}")

        definitions = hedis[['code', 'hedis_definition']].drop_duplicates(ignore_index=True)
        self.check_single_definition(definitions)

        value_sets = (
            hedis[['code', 'value_set']]
            .dropna()
            .drop_duplicates()
            .groupby('code', sort=True)['value_set']
            .agg(lambda names: join_value_sets(names, self.separator))
            .rename('code_value_sets')
            .reset_index()
        )

        mapping = definitions.merge(value_sets, on='code', how='left', validate='one_to_one')
        mapping = mapping[VALUE_SET_COLUMNS].sort_values('code', ignore_index=True)

        logger.info(f"  Mapped {len(mapping):,} codes to value sets")
        return mapping

    @staticmethod
    def check_single_definition(definitions: pd.DataFrame) -> None:
        """Every code must carry exactly one definition text"""
        per_code = definitions.groupby('code')['hedis_definition'].nunique(dropna=False)
        conflicting = per_code[per_code > 1].index.tolist()

        if conflicting:
            logger.error(
                f"{len(conflicting)} codes have more than one HEDIS definition: {conflicting[:10]}"
            )
            raise InvariantViolation(
                f"{len(conflicting)} codes map to multiple HEDIS definitions",
                offending=conflicting
            )
