import sys

import pandas as pd
import pytest

import main
from config.settings import FilePaths
from main import ClaimsEnrichmentETL
from src.utils.errors import FatalConfigError, InvariantViolation


@pytest.fixture
def pipeline_paths(tmp_path, monkeypatch, roster, claims):
    """Every FilePaths entry the pipeline touches, redirected under tmp_path"""
    paths = {
        "CHESTNUT_NPI_CSV": tmp_path / "doc" / "chestnut_npi_full.csv",
        "IL_MO_NPI_CSV": tmp_path / "doc" / "illinois_missouri_npi_full.csv",
        "NUCC_TAXONOMY_CSV": tmp_path / "doc" / "nucc_taxonomy.csv",
        "CLAIMS_PARQUET": tmp_path / "data" / "medicaid-provider-spending.parquet",
        "CHESTNUT_CLAIMS_PARQUET": tmp_path / "data" / "chestnut_claims.parquet",
        "IL_MO_CLAIMS_PARQUET": tmp_path / "data" / "illinois_missouri_claims.parquet",
        "COMPREHENSIVE_LOOKUP_CSV": tmp_path / "hcpcs" / "comprehensive_code_lookup.csv",
        "REFERENCE_COVERAGE_CSV": tmp_path / "hcpcs" / "medicaid_hcpcs_codes_coverage.csv",
    }
    for name, path in paths.items():
        monkeypatch.setattr(FilePaths, name, path)

    (tmp_path / "doc").mkdir()
    (tmp_path / "data").mkdir()
    roster.iloc[[0]].to_csv(paths["CHESTNUT_NPI_CSV"], index=False)
    roster.iloc[[1]].to_csv(paths["IL_MO_NPI_CSV"], index=False)
    claims.to_parquet(paths["CLAIMS_PARQUET"], index=False)
    return paths


@pytest.fixture
def written_lookup(pipeline_paths, code_lookup):
    path = pipeline_paths["COMPREHENSIVE_LOOKUP_CSV"]
    path.parent.mkdir(parents=True, exist_ok=True)
    code_lookup.to_csv(path, index=False)
    return path


def test_full_run_writes_every_output(pipeline_paths, code_reader):
    ClaimsEnrichmentETL(chunk_size=2, reader=code_reader).run_full_pipeline(main.STAGES)

    assert pipeline_paths["COMPREHENSIVE_LOOKUP_CSV"].exists()
    chestnut = pd.read_parquet(pipeline_paths["CHESTNUT_CLAIMS_PARQUET"])
    il_mo = pd.read_parquet(pipeline_paths["IL_MO_CLAIMS_PARQUET"])
    assert chestnut["BILLING_PROVIDER_NPI_NUM"].tolist() == ["1111111111"]
    assert chestnut["code_description"].tolist() == ["Office o/p est low 20 min"]
    assert il_mo["sp_name"].tolist() == ["Jane Doe"]

    coverage = pd.read_csv(pipeline_paths["REFERENCE_COVERAGE_CSV"], dtype={"code": str})
    assert sorted(coverage["code"]) == ["99213", "XX999"]
    assert coverage["n_claims"].sum() == 3


def test_roster_selection_writes_only_that_roster(pipeline_paths, written_lookup):
    ClaimsEnrichmentETL().run_full_pipeline(["enrich"], roster_names=["chestnut"])

    assert pipeline_paths["CHESTNUT_CLAIMS_PARQUET"].exists()
    assert not pipeline_paths["IL_MO_CLAIMS_PARQUET"].exists()


def test_unknown_roster_is_fatal(pipeline_paths):
    with pytest.raises(FatalConfigError, match="wisconsin"):
        ClaimsEnrichmentETL().run_full_pipeline(["enrich"], roster_names=["wisconsin"])


def test_coverage_stage_reads_enriched_outputs(pipeline_paths, written_lookup):
    ClaimsEnrichmentETL().run_full_pipeline(["enrich"])

    ClaimsEnrichmentETL().run_full_pipeline(["coverage"])

    assert pipeline_paths["REFERENCE_COVERAGE_CSV"].exists()


def test_coverage_before_enrichment_is_fatal(pipeline_paths, written_lookup):
    with pytest.raises(FatalConfigError, match="enrich stage"):
        ClaimsEnrichmentETL().run_full_pipeline(["coverage"])


def test_duplicate_roster_npi_writes_no_roster_output(pipeline_paths, written_lookup, roster):
    roster.iloc[[1, 1]].to_csv(pipeline_paths["IL_MO_NPI_CSV"], index=False)

    with pytest.raises(InvariantViolation) as excinfo:
        ClaimsEnrichmentETL().run_full_pipeline(["enrich"])

    assert excinfo.value.offending == ["2222222222"]
    assert not pipeline_paths["CHESTNUT_CLAIMS_PARQUET"].exists()
    assert not pipeline_paths["IL_MO_CLAIMS_PARQUET"].exists()


def test_main_exits_nonzero_on_invariant_violation(pipeline_paths, written_lookup, roster, tmp_path, monkeypatch):
    roster.iloc[[1, 1]].to_csv(pipeline_paths["IL_MO_NPI_CSV"], index=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(sys, "argv", ["main.py", "--stage", "enrich"])

    with pytest.raises(SystemExit) as excinfo:
        main.main()

    assert excinfo.value.code == 1
    assert not pipeline_paths["CHESTNUT_CLAIMS_PARQUET"].exists()
