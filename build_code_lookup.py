#!/usr/bin/env python3
"""
Build the Comprehensive Code Lookup

Reads every available procedure-code reference source (RVU vintages, the current
HCPCS dictionary and the HEDIS codebook), keeps the highest-priority description
per code and writes one row per code.

Usage:
    python build_code_lookup.py
    python build_code_lookup.py --output doc/hcpcs/comprehensive_code_lookup.csv

Output:
    - doc/hcpcs/comprehensive_code_lookup.csv (code, description, code_type, source, year)
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

import pandas as pd

from config.settings import FilePaths
from src.extractors.excel_extractor import CodeSourceReader
from src.loaders.parquet_loader import ParquetLoader
from src.transformers.code_consolidator import CodeConsolidator
from src.utils.errors import PipelineError

logger = logging.getLogger(__name__)


class CodeLookupBuilder:
    """Build and persist the comprehensive HCPCS/CPT lookup"""

    def __init__(self,
                 reader: Optional[CodeSourceReader] = None,
                 consolidator: Optional[CodeConsolidator] = None,
                 output_path: Path = FilePaths.COMPREHENSIVE_LOOKUP_CSV):
        self.reader = reader or CodeSourceReader()
        self.consolidator = consolidator or CodeConsolidator()
        self.loader = ParquetLoader()
        self.output_path = Path(output_path)

    def build(self) -> pd.DataFrame:
        logger.info("=" * 60)
        logger.info("Parsing historical HCPCS and CPT codes...")
        logger.info("=" * 60)

        lookup = self.consolidator.build_lookup(self.reader.source_readers())
        if lookup.empty:
            raise PipelineError("No reference sources could be read - lookup not written")

        logger.info("Saving comprehensive HCPCS/CPT lookup...")
        self.loader.save_csv(lookup, self.output_path)
        return lookup


def main():
    parser = argparse.ArgumentParser(description="Build the comprehensive HCPCS/CPT code lookup")
    parser.add_argument("--output", type=Path, default=FilePaths.COMPREHENSIVE_LOOKUP_CSV,
                        help="Where to write the lookup CSV")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler('code_lookup.log'),
            logging.StreamHandler(sys.stdout)
        ]
    )

    try:
        CodeLookupBuilder(output_path=args.output).build()
        logger.info("Done! Run main.py --stage enrich to enrich claims with the new lookup.")
    except PipelineError as e:
        logger.error(f"Code lookup build failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
