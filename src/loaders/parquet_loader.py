"""
Write pipeline outputs (enriched claims parquet, lookup and coverage CSVs)
"""
import pandas as pd
import logging
from pathlib import Path
from typing import List

logger = logging.getLogger(__name__)

class ParquetLoader:
    """Write pipeline outputs; a failed write raises, nothing is partially promoted"""

    def save_dataframe(self, df: pd.DataFrame, output_path: Path,
                       prepare_for_parquet: bool = True) -> None:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        if prepare_for_parquet:
            df = self._prepare_for_parquet(df)

        df.to_parquet(output_path, index=False, engine="pyarrow")
        logger.info(f"Saved {len(df):,} rows, {len(df.columns)} columns to {output_path}")

    def save_csv(self, df: pd.DataFrame, output_path: Path) -> None:
        """Save dataframe as CSV; same frame always gives the same bytes"""
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        df.to_csv(output_path, index=False, lineterminator="\n")
        logger.info(f"Saved {len(df):,} rows to {output_path}")

    @staticmethod
    def _mixed_type_columns(df: pd.DataFrame, sample_size: int = 1000) -> List[str]:
        mixed = []
        for col in df.select_dtypes(include="object").columns:
            if df[col].dropna().head(sample_size).map(type).nunique() > 1:
                mixed.append(col)
        return mixed

    def _prepare_for_parquet(self, df: pd.DataFrame) -> pd.DataFrame:
        """Stringify object columns holding more than one Python type (Arrow rejects them)"""
        mixed = self._mixed_type_columns(df)
        if not mixed:
            return df

        logger.debug(f"Converting mixed-type columns to string: {mixed}")
        return df.astype({col: "string" for col in mixed})
