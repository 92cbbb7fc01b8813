"""
Local path overrides - copy this file to config/settings_local.py and edit.

settings_local.py is gitignored. Only set the paths that differ from
config/settings.py; names must match FilePaths attributes.
"""

# CLAIMS_PARQUET = "/path/to/external/medicaid-provider-spending.parquet"

# HEDIS codebooks are large and often stored outside the repo:
# HEDIS_CODEBOOK_XLSX = "/path/to/external/HEDIS MY 2026 Volume 2 Value Set Directory_2025-08-01.xlsx"

# Derived files can also be redirected:
# CHESTNUT_CLAIMS_PARQUET = "/path/to/external/chestnut_claims.parquet"
