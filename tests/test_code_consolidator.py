import pandas as pd
import pytest

from src.loaders.parquet_loader import ParquetLoader
from src.transformers.code_consolidator import (
    CodeConsolidator, PriorityPolicy, classify_code_type
)
from src.utils.errors import MissingSourceError
from src.utils.schemas import CANONICAL_CODE_COLUMNS


def records(source, year, rows):
    return pd.DataFrame({
        "code": [code for code, _ in rows],
        "description": [description for _, description in rows],
        "source": source,
        "year": year,
    })


@pytest.mark.parametrize("code, expected", [
    ("99213", "CPT"),
    ("00100", "CPT"),
    ("H0001", "HCPCS_Level_II"),
    ("G0101", "HCPCS_Level_II"),
    ("ZZ9", "HCPCS_Level_II"),
    ("0001F", "Other"),
    ("992130", "Other"),
    ("9921", "Other"),
    ("h0001", "Other"),
    ("", "Other"),
    (None, "Other"),
])
def test_classify_code_type(code, expected):
    assert classify_code_type(code) == expected


def test_priority_policy_tiers():
    policy = PriorityPolicy()

    assert policy.tier("HCPC2026_JAN", "HCPCS_Level_II") == 3
    assert policy.tier("HEDIS_2026", "HCPCS_Level_II") == 3
    assert policy.tier("RVU2022A", "HCPCS_Level_II") == 2
    assert policy.tier("RVU2025A", "CPT") == 2
    # CPT rows from the current dictionary are not boosted
    assert policy.tier("HCPC2026_JAN", "CPT") == 1


def test_current_dictionary_beats_older_vintage():
    current = records("HCPC2026_JAN", "2026", [("G0101", "description A")])
    vintage = records("RVU2022A", "2022", [("G0101", "description B")])

    for streams in ([current, vintage], [vintage, current]):
        lookup = CodeConsolidator().consolidate(streams)
        assert lookup.loc[0, "description"] == "description A"
        assert lookup.loc[0, "source"] == "HCPC2026_JAN"


def test_newer_vintage_wins_for_cpt():
    streams = [
        records("RVU2025A", "2025", [("99213", "Office o/p est low 20 min")]),
        records("RVU2022A", "2022", [("99213", "Office/outpatient visit est")]),
        records("RVU2024A", "2024", [("99213", "Office o/p est low 20-29 min")]),
    ]

    lookup = CodeConsolidator().consolidate(streams)

    assert lookup.loc[0, "source"] == "RVU2025A"
    assert lookup.loc[0, "year"] == "2025"


def test_same_source_duplicates_resolve_lexicographically():
    stream = records("RVU2024A", "2024", [("99213", "zeta"), ("99213", "alpha")])

    lookup = CodeConsolidator().consolidate([stream])

    assert lookup["description"].tolist() == ["alpha"]


def test_one_row_per_code_sorted(code_reader):
    lookup = CodeConsolidator().build_lookup(code_reader.source_readers())

    assert list(lookup.columns) == CANONICAL_CODE_COLUMNS
    assert lookup["code"].tolist() == ["0001F", "99213", "G0101", "H0001"]
    assert not lookup["code"].duplicated().any()
    assert set(lookup["code_type"]) <= {"CPT", "HCPCS_Level_II", "Other"}


def test_build_lookup_from_reference_files(code_reader):
    lookup = CodeConsolidator().build_lookup(code_reader.source_readers()).set_index("code")

    assert lookup.loc["99213", "source"] == "RVU2024A"
    assert lookup.loc["G0101", "source"] == "HCPC2026_JAN"
    assert lookup.loc["G0101", "description"] == "Ca screen;pelvic/breast exam"
    assert lookup.loc["H0001", "code_type"] == "HCPCS_Level_II"
    assert lookup.loc["0001F", "code_type"] == "Other"


def test_consolidation_is_deterministic_across_input_order(code_reader, tmp_path):
    consolidator = CodeConsolidator()
    streams = consolidator.collect_sources(code_reader.source_readers())
    loader = ParquetLoader()

    loader.save_csv(consolidator.consolidate(streams), tmp_path / "forward.csv")
    loader.save_csv(consolidator.consolidate(streams[::-1]), tmp_path / "reverse.csv")

    assert (tmp_path / "forward.csv").read_bytes() == (tmp_path / "reverse.csv").read_bytes()


def test_missing_source_is_skipped():
    def unavailable():
        raise MissingSourceError("RVU archive not found")

    readers = [
        ("RVU2023A", unavailable),
        ("HCPC2026_JAN", lambda: records("HCPC2026_JAN", "2026", [("H0001", "Alcohol and/or drug assessment")])),
    ]

    lookup = CodeConsolidator().build_lookup(readers)

    assert lookup["code"].tolist() == ["H0001"]


def test_no_sources_gives_empty_lookup():
    lookup = CodeConsolidator().consolidate([])

    assert lookup.empty
    assert list(lookup.columns) == CANONICAL_CODE_COLUMNS


def test_custom_policy_can_promote_cpt_from_current_dictionary():
    policy = PriorityPolicy(official_code_types=["HCPCS_Level_II", "CPT"])
    streams = [
        records("HCPC2026_JAN", "2026", [("99213", "current text")]),
        records("RVU2025A", "2025", [("99213", "vintage text")]),
    ]

    assert CodeConsolidator().consolidate(streams).loc[0, "description"] == "vintage text"
    assert CodeConsolidator(policy).consolidate(streams).loc[0, "description"] == "current text"


def test_type_breakdown_counts_every_type():
    lookup = pd.DataFrame({"code_type": ["CPT", "CPT", "Other"]})

    assert CodeConsolidator.type_breakdown(lookup) == {"CPT": 2, "HCPCS_Level_II": 0, "Other": 1}
