"""
Extract procedure-code records from reference spreadsheets (RVU, HCPCS, HEDIS)
"""
import fnmatch
import io
import logging
import zipfile
from pathlib import Path
from typing import Callable, List, Optional, Tuple

import pandas as pd

from config.settings import FilePaths, ReferenceConfig
from src.utils.errors import MissingSourceError
from src.utils.schemas import CODE_RECORD_COLUMNS, missing_columns

logger = logging.getLogger(__name__)


def _clean_text(series: pd.Series) -> pd.Series:
    return series.astype("string").fillna("").str.strip().astype(str)


def to_code_records(df: pd.DataFrame, source: str, year: str) -> pd.DataFrame:
    """Tag (code, description) rows with their source, dropping empty rows"""
    records = pd.DataFrame({
        'code': _clean_text(df['code']),
        'description': _clean_text(df['description']),
    })
    records = records[(records['code'] != "") & (records['description'] != "")]
    records = records.assign(source=source, year=str(year))
    return records[CODE_RECORD_COLUMNS].reset_index(drop=True)


class CodeSourceReader:
    """Read each reference source into a (code, description, source, year) frame"""

    def __init__(self,
                 rvu_archive_dir: Path = FilePaths.RVU_ARCHIVE_DIR,
                 hcpcs_current_xlsx: Path = FilePaths.HCPCS_CURRENT_XLSX,
                 hedis_codebook_xlsx: Path = FilePaths.HEDIS_CODEBOOK_XLSX,
                 rvu_years: Optional[List[str]] = None):
        self.rvu_archive_dir = Path(rvu_archive_dir)
        self.hcpcs_current_xlsx = Path(hcpcs_current_xlsx)
        self.hedis_codebook_xlsx = Path(hedis_codebook_xlsx)
        self.rvu_years = rvu_years if rvu_years is not None else ReferenceConfig.RVU_YEARS
        self._hedis_codebook = None

    def source_readers(self) -> List[Tuple[str, Callable[[], pd.DataFrame]]]:
        """All configured sources as (label, reader) pairs, oldest vintage first"""
        readers = [
            (f"RVU20{yy}A", lambda yy=yy: self.read_rvu_vintage(yy))
            for yy in self.rvu_years
        ]
        readers.append((ReferenceConfig.HCPCS_CURRENT_SOURCE, self.read_hcpcs_current))
        readers.append((ReferenceConfig.HEDIS_SOURCE, self.read_hedis_codes))
        return readers

    def read_rvu_vintage(self, yy: str) -> pd.DataFrame:
        """Read one RVU annual archive (CPT descriptions)"""
        source = f"RVU20{yy}A"
        archive = self.rvu_archive_dir / ReferenceConfig.RVU_ARCHIVE_TEMPLATE.format(yy=yy)

        if not archive.exists():
            raise MissingSourceError(f"RVU archive not found: {archive}")
        if archive.stat().st_size <= ReferenceConfig.MIN_ARCHIVE_BYTES:
            raise MissingSourceError(
                f"RVU archive {archive} is {archive.stat().st_size} bytes - looks like a failed download"
            )

        logger.info(f"Processing {source}...")
        try:
            with zipfile.ZipFile(archive) as zf:
                members = sorted(
                    name for name in zf.namelist()
                    if fnmatch.fnmatch(Path(name).name, ReferenceConfig.RVU_MEMBER_PATTERN)
                )
                if not members:
                    raise MissingSourceError(
                        f"No {ReferenceConfig.RVU_MEMBER_PATTERN} member in {archive}"
                    )
                rvu_data = pd.read_excel(
                    io.BytesIO(zf.read(members[0])),
                    skiprows=ReferenceConfig.RVU_SKIP_ROWS,
                    dtype=str
                )
        except (OSError, zipfile.BadZipFile, ValueError) as e:
            raise MissingSourceError(f"Failed to read RVU archive {archive}: {e}") from e

        rvu_codes = rvu_data.iloc[:, [ReferenceConfig.RVU_CODE_COL, ReferenceConfig.RVU_DESCRIPTION_COL]]
        rvu_codes.columns = ['code', 'description']
        records = to_code_records(rvu_codes, source, f"20{yy}")

        logger.info(f"  Found {len(records):,} codes")
        return records

    def read_hcpcs_current(self) -> pd.DataFrame:
        """Read the current HCPCS dictionary (Level II descriptions)"""
        path = self.hcpcs_current_xlsx
        if not path.exists():
            raise MissingSourceError(f"Current HCPCS file not found: {path}")

        logger.info(f"Processing {ReferenceConfig.HCPCS_CURRENT_SOURCE}...")
        try:
            hcpcs_current = pd.read_excel(path, usecols=ReferenceConfig.HCPCS_CURRENT_COLUMNS, dtype=str)
        except (OSError, ValueError) as e:
            raise MissingSourceError(f"Failed to read current HCPCS file {path}: {e}") from e

        hcpcs_current = hcpcs_current.rename(columns={
            ReferenceConfig.HCPCS_CODE_COL: 'code',
            ReferenceConfig.HCPCS_DESCRIPTION_COL: 'description'
        })
        if 'code' not in hcpcs_current.columns or 'description' not in hcpcs_current.columns:
            raise MissingSourceError(
                f"Current HCPCS file {path} lacks {ReferenceConfig.HCPCS_CODE_COL}/"
                f"{ReferenceConfig.HCPCS_DESCRIPTION_COL} columns"
            )

        records = to_code_records(
            hcpcs_current, ReferenceConfig.HCPCS_CURRENT_SOURCE, ReferenceConfig.HCPCS_CURRENT_YEAR
        )
        logger.info(f"  Found {len(records):,} codes")
        return records

    def read_hedis_codebook(self) -> pd.DataFrame:
        """Read the raw 'Value Sets to Codes' sheet (loaded once)"""
        if self._hedis_codebook is not None:
            return self._hedis_codebook

        path = self.hedis_codebook_xlsx
        if not path.exists():
            raise MissingSourceError(f"HEDIS codebook not found: {path}")

        logger.info("Loading HEDIS codebook...")
        try:
            codebook = pd.read_excel(path, sheet_name=ReferenceConfig.HEDIS_SHEET, dtype=str)
        except (OSError, ValueError) as e:
            raise MissingSourceError(f"Failed to read HEDIS codebook {path}: {e}") from e

        if missing_columns(codebook, 'codebook'):
            raise MissingSourceError(f"HEDIS codebook {path} is missing required columns")

        logger.info(f"  Loaded {len(codebook):,} codebook rows")
        self._hedis_codebook = codebook
        return codebook

    def read_hedis_codes(self) -> pd.DataFrame:
        """HEDIS HCPCS codes with their definition as description"""
        codebook = self.read_hedis_codebook()

        hedis = codebook[codebook[ReferenceConfig.HEDIS_CODE_SYSTEM_COL].isin(ReferenceConfig.LOOKUP_CODE_SYSTEMS)]
        hedis = hedis.rename(columns={
            ReferenceConfig.HEDIS_CODE_COL: 'code',
            ReferenceConfig.HEDIS_DEFINITION_COL: 'description'
        })[['code', 'description']]

        records = to_code_records(hedis, ReferenceConfig.HEDIS_SOURCE, ReferenceConfig.HEDIS_YEAR)
        records = records.drop_duplicates(ignore_index=True)

        logger.info(f"  Found {len(records):,} unique HEDIS codes")
        return records
