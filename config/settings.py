"""
Configuration settings for the claims enrichment pipeline
"""
import importlib.util
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

# Base paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = BASE_DIR / "data"
DOC_DIR = BASE_DIR / "doc"
HCPCS_DIR = DOC_DIR / "hcpcs"
OUTPUT_DATA_DIR = BASE_DIR / "output"

# Optional machine-specific overrides (untracked)
LOCAL_SETTINGS_FILE = Path(__file__).parent / "settings_local.py"

# Processing settings
CHUNK_SIZE = 500000  # Record batch size for the claims scan

# File paths
class FilePaths:
    # Reference sources
    RVU_ARCHIVE_DIR = HCPCS_DIR / "historical"
    HCPCS_CURRENT_XLSX = HCPCS_DIR / "HCPC2026_JAN_ANWEB_01122026.xlsx"
    HEDIS_CODEBOOK_XLSX = DOC_DIR / "HEDIS MY 2026 Volume 2 Value Set Directory_2025-08-01.xlsx"
    NUCC_TAXONOMY_CSV = DOC_DIR / "nucc_taxonomy_251.csv"

    # Claims fact table
    CLAIMS_PARQUET = DATA_DIR / "medicaid-provider-spending.parquet"

    # Provider rosters (produced by the NPI extraction step)
    CHESTNUT_NPI_CSV = DOC_DIR / "chestnut_npi_full.csv"
    IL_MO_NPI_CSV = DOC_DIR / "illinois_missouri_npi_full.csv"

    # Outputs
    COMPREHENSIVE_LOOKUP_CSV = HCPCS_DIR / "comprehensive_code_lookup.csv"
    REFERENCE_COVERAGE_CSV = HCPCS_DIR / "medicaid_hcpcs_codes_coverage.csv"
    CHESTNUT_CLAIMS_PARQUET = DATA_DIR / "chestnut_claims.parquet"
    IL_MO_CLAIMS_PARQUET = DATA_DIR / "illinois_missouri_claims.parquet"

# Reference source layout
class ReferenceConfig:
    RVU_YEARS = ["22", "23", "24", "25", "26"]
    RVU_ARCHIVE_TEMPLATE = "RVU{yy}A.zip"
    RVU_MEMBER_PATTERN = "PPRRVU*_nonQPP.xlsx"
    RVU_SKIP_ROWS = 9
    RVU_CODE_COL = 0
    RVU_DESCRIPTION_COL = 2  # column 1 is the modifier
    MIN_ARCHIVE_BYTES = 50000  # smaller archives are failed downloads

    HCPCS_CURRENT_SOURCE = "HCPC2026_JAN"
    HCPCS_CURRENT_YEAR = "2026"
    HCPCS_CURRENT_COLUMNS = "A:D"
    HCPCS_CODE_COL = "HCPC"
    HCPCS_DESCRIPTION_COL = "LONG DESCRIPTION"

    HEDIS_SOURCE = "HEDIS_2026"
    HEDIS_YEAR = "2026"
    HEDIS_SHEET = "Value Sets to Codes"
    HEDIS_VALUE_SET_COL = "Value Set Name"
    HEDIS_CODE_SYSTEM_COL = "Code System"
    HEDIS_CODE_COL = "Code"
    HEDIS_DEFINITION_COL = "Definition"

    # Code systems contributing descriptions to the lookup
    LOOKUP_CODE_SYSTEMS = ["HCPCS"]
    # Code systems contributing value sets to claims
    VALUE_SET_CODE_SYSTEMS = ["HCPCS", "CPT", "CPT-CAT-II"]
    VALUE_SET_SEPARATOR = " | "

# Consolidation priority policy
class PriorityConfig:
    # Pending domain-owner confirmation: only Level II codes from these sources
    # take the top tier, CPT rows from them fall to the lowest tier.
    OFFICIAL_SOURCES = ["HCPC2026_JAN", "HEDIS_2026"]
    OFFICIAL_CODE_TYPES = ["HCPCS_Level_II"]
    VINTAGE_SOURCE_PREFIXES = ["RVU"]

# Column mapping configuration
class ColumnMapping:
    BILLING_NPI = "BILLING_PROVIDER_NPI_NUM"
    SERVICING_NPI = "SERVICING_PROVIDER_NPI_NUM"
    CLAIM_CODE = "HCPCS_CODE"
    CLAIM_MONTH = "CLAIM_FROM_MONTH"
    YEAR_MONTH = "year_month"
    CLAIM_COUNT = "TOTAL_CLAIMS"
    BENEFICIARY_COUNT = "TOTAL_UNIQUE_BENEFICIARIES"
    PAID_AMOUNT = "TOTAL_PAID"

    ROSTER_NPI = "NPI"
    ADDRESS_FIELDS = [
        "LocationAddress1", "LocationAddress2", "LocationCity",
        "LocationState", "LocationZip"
    ]

    # Provider lookup column -> role-suffix
    PROVIDER_RENAME_DICT = {
        "Name": "name",
        "Address": "address",
        "Taxonomy": "taxonomy",
        "TaxonomyCode": "taxonomy_code",
        "TaxonomyDisplayName": "taxonomy_description",
    }
    SERVICING_PREFIX = "sp_"
    BILLING_PREFIX = "bp_"

    # Comprehensive lookup column -> enriched claim column
    CODE_RENAME_DICT = {
        "description": "code_description",
        "code_type": "code_type",
    }

    NUCC_RENAME_DICT = {
        "Code": "TaxonomyCode",
        "Grouping": "TaxonomyGrouping",
        "Classification": "TaxonomyClassification",
        "Specialization": "TaxonomySpecialization",
        "Display Name": "TaxonomyDisplayName",
        "Section": "TaxonomySection",
    }

# Data validation settings
class ValidationConfig:
    REQUIRED_COLUMNS = {
        'claims': [
            ColumnMapping.BILLING_NPI, ColumnMapping.SERVICING_NPI,
            ColumnMapping.CLAIM_CODE, ColumnMapping.CLAIM_MONTH
        ],
        'roster': [ColumnMapping.ROSTER_NPI, 'Name'],
        'lookup': ['code', 'description', 'code_type', 'source', 'year'],
        'codebook': [
            ReferenceConfig.HEDIS_VALUE_SET_COL, ReferenceConfig.HEDIS_CODE_SYSTEM_COL,
            ReferenceConfig.HEDIS_CODE_COL, ReferenceConfig.HEDIS_DEFINITION_COL
        ],
    }

# Coverage reporting settings
class CoverageConfig:
    TOP_N = 20
    EXCELLENT_PCT = 80.0
    GOOD_PCT = 60.0

# Rosters enriched by a full run: (name, roster path attribute, output path attribute)
class RosterConfig:
    ROSTERS = [
        ("chestnut", "CHESTNUT_NPI_CSV", "CHESTNUT_CLAIMS_PARQUET"),
        ("illinois_missouri", "IL_MO_NPI_CSV", "IL_MO_CLAIMS_PARQUET"),
    ]


def _apply_local_overrides(path: Path = LOCAL_SETTINGS_FILE) -> None:
    """Override FilePaths attributes from settings_local.py when present"""
    if not path.exists():
        return

    spec = importlib.util.spec_from_file_location("settings_local", path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)

    for name in dir(module):
        if name.isupper() and hasattr(FilePaths, name):
            setattr(FilePaths, name, Path(getattr(module, name)))
            logger.debug(f"Local override applied: {name}")


_apply_local_overrides()

# Create output directories if they don't exist
for dir_path in [OUTPUT_DATA_DIR]:
    dir_path.mkdir(parents=True, exist_ok=True)
