"""
Main ETL Pipeline for Claims Code Enrichment
"""
import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional
import pandas as pd
from tqdm import tqdm

from build_code_lookup import CodeLookupBuilder
from config.settings import CHUNK_SIZE, FilePaths, RosterConfig
from src.extractors.excel_extractor import CodeSourceReader
from src.extractors.parquet_extractor import ClaimsExtractor
from src.loaders.parquet_loader import ParquetLoader
from src.transformers.claims_enricher import ClaimsEnricher, load_code_lookup
from src.transformers.coverage_auditor import CoverageAuditor
from src.transformers.provider_lookup import build_provider_lookup, load_roster, load_taxonomy_reference
from src.transformers.value_set_mapper import ValueSetMapper
from src.utils.errors import FatalConfigError, InvariantViolation, MissingSourceError, PipelineError

logger = logging.getLogger(__name__)

STAGES = ["lookup", "enrich", "coverage"]


def configure_logging(log_file: str = 'etl_pipeline.log') -> None:
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler(sys.stdout)
        ]
    )


class ClaimsEnrichmentETL:
    """Main ETL pipeline orchestrator"""

    def __init__(self, chunk_size: int = CHUNK_SIZE, reader: Optional[CodeSourceReader] = None):
        self.chunk_size = chunk_size

        # Initialize components
        self.reader = reader or CodeSourceReader()
        self.lookup_builder = CodeLookupBuilder(reader=self.reader, output_path=FilePaths.COMPREHENSIVE_LOOKUP_CSV)
        self.value_set_mapper = ValueSetMapper()
        self.extractor = ClaimsExtractor(FilePaths.CLAIMS_PARQUET, chunk_size)
        self.loader = ParquetLoader()

        logger.info(f"Initialized claims enrichment pipeline with chunk size: {chunk_size}")

    def run_full_pipeline(self, stages: List[str], roster_names: Optional[List[str]] = None) -> None:
        """Execute the requested stages in order"""
        logger.info(f"Starting pipeline stages: {stages}")
        rosters = self._select_rosters(roster_names)

        phase_progress = tqdm(
            stages,
            desc="Claims ETL",
            unit="phase",
            bar_format="{l_bar}{bar}| {n_fmt}/{total_fmt} phases [{elapsed}<{remaining}]"
        )

        try:
            if "lookup" in stages:
                logger.info("=== CODE LOOKUP PHASE ===")
                self.lookup_builder.build()
                phase_progress.update(1)

            enriched_by_roster: Dict[str, pd.DataFrame] = {}
            if "enrich" in stages:
                logger.info("=== ENRICHMENT PHASE ===")
                enriched_by_roster = self.enrich_rosters(rosters)
                phase_progress.update(1)

            if "coverage" in stages:
                logger.info("=== COVERAGE PHASE ===")
                if not enriched_by_roster:
                    enriched_by_roster = self._load_enriched(rosters)
                self.analyze_coverage(enriched_by_roster)
                phase_progress.update(1)

            logger.info("Pipeline completed successfully!")
        finally:
            phase_progress.close()

    def _select_rosters(self, roster_names: Optional[List[str]]) -> List[tuple]:
        rosters = [
            (name, getattr(FilePaths, roster_attr), getattr(FilePaths, output_attr))
            for name, roster_attr, output_attr in RosterConfig.ROSTERS
        ]
        if roster_names:
            unknown = set(roster_names) - {name for name, _, _ in rosters}
            if unknown:
                raise FatalConfigError(f"Unknown roster(s): {sorted(unknown)}")
            rosters = [roster for roster in rosters if roster[0] in roster_names]
        return rosters

    def build_value_sets(self) -> Optional[pd.DataFrame]:
        """HEDIS value sets, or None when the codebook is unavailable"""
        try:
            codebook = self.reader.read_hedis_codebook()
        except MissingSourceError as e:
            logger.warning(f"HEDIS columns will be empty: {e}")
            return None
        return self.value_set_mapper.build_mapping(codebook)

    def enrich_rosters(self, rosters: List[tuple]) -> Dict[str, pd.DataFrame]:
        code_lookup = load_code_lookup(FilePaths.COMPREHENSIVE_LOOKUP_CSV)
        value_sets = self.build_value_sets()
        taxonomy_ref = load_taxonomy_reference(FilePaths.NUCC_TAXONOMY_CSV)

        enriched_by_roster = {}
        for name, roster_path, output_path in rosters:
            logger.info(f"--- Roster: {name} ---")
            roster = load_roster(roster_path)
            provider_lookup = build_provider_lookup(roster, taxonomy_ref)

            enricher = ClaimsEnricher(code_lookup, provider_lookup, value_sets, self.chunk_size)
            enriched = enricher.enrich_from_source(self.extractor)

            logger.info(f"Found {len(enriched):,} {name} claims")
            enriched_by_roster[name] = enriched

        # Write only after every roster enriched cleanly
        for name, _, output_path in rosters:
            self.loader.save_dataframe(enriched_by_roster[name], output_path)

        return enriched_by_roster

    def _load_enriched(self, rosters: List[tuple]) -> Dict[str, pd.DataFrame]:
        enriched_by_roster = {}
        for name, _, output_path in rosters:
            if not Path(output_path).exists():
                raise FatalConfigError(f"Enriched claims not found: {output_path} - run the enrich stage first")
            enriched_by_roster[name] = pd.read_parquet(output_path)
        return enriched_by_roster

    def _reference_codes(self) -> tuple:
        """Codes in the current HCPCS dictionary and in the HEDIS codebook"""
        try:
            current_codes = set(self.reader.read_hcpcs_current()['code'])
        except MissingSourceError as e:
            logger.warning(f"Current dictionary coverage unavailable: {e}")
            current_codes = set()
        try:
            codebook_codes = set(self.reader.read_hedis_codes()['code'])
        except MissingSourceError as e:
            logger.warning(f"Codebook coverage unavailable: {e}")
            codebook_codes = set()
        return current_codes, codebook_codes

    def analyze_coverage(self, enriched_by_roster: Dict[str, pd.DataFrame]) -> None:
        current_codes, codebook_codes = self._reference_codes()
        auditor = CoverageAuditor(current_codes, codebook_codes)

        for name, enriched in enriched_by_roster.items():
            if enriched.empty:
                logger.warning(f"No {name} claims to audit")
                continue
            auditor.audit_enriched(enriched, label=name)

        logger.info("=== Full Claims Coverage vs Reference Files ===")
        code_lookup = load_code_lookup(FilePaths.COMPREHENSIVE_LOOKUP_CSV)
        code_volume = auditor.scan_code_volume(FilePaths.CLAIMS_PARQUET)
        coverage = auditor.reference_coverage(code_volume, code_lookup['code'])
        self.loader.save_csv(coverage, FilePaths.REFERENCE_COVERAGE_CSV)
        auditor.audit_source(coverage, code_lookup)


def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(description="Claims code enrichment pipeline")
    parser.add_argument("--stage", choices=STAGES + ["all"], default="all",
                        help="Run a single stage, or all of them in order")
    parser.add_argument("--roster", action="append", dest="rosters",
                        help="Only process this roster (repeatable)")
    args = parser.parse_args()

    stages = STAGES if args.stage == "all" else [args.stage]
    configure_logging()

    try:
        pipeline = ClaimsEnrichmentETL(chunk_size=CHUNK_SIZE)
        pipeline.run_full_pipeline(stages, roster_names=args.rosters)

    except KeyboardInterrupt:
        logger.info("Pipeline interrupted by user")
    except InvariantViolation as e:
        logger.error(f"INVARIANT VIOLATION - output of this run is suspect and was not written: {e}")
        if e.offending:
            logger.error(f"Offending keys (first 20): {e.offending[:20]}")
        sys.exit(1)
    except PipelineError as e:
        logger.error(f"Pipeline failed with error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
