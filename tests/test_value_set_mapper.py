import pandas as pd
import pytest

from src.transformers.value_set_mapper import ValueSetMapper, join_value_sets, split_value_sets
from src.utils.errors import InvariantViolation
from src.utils.schemas import VALUE_SET_COLUMNS


def test_mapping_has_one_row_per_code(hedis_codebook):
    mapping = ValueSetMapper().build_mapping(hedis_codebook)

    assert list(mapping.columns) == VALUE_SET_COLUMNS
    assert mapping["code"].tolist() == ["99213", "G0101", "H0001"]


def test_value_set_names_recoverable_from_serialized_field(hedis_codebook):
    mapping = ValueSetMapper().build_mapping(hedis_codebook).set_index("code")

    for code, names in hedis_codebook.groupby("Code")["Value Set Name"]:
        if code not in mapping.index:
            continue
        assert set(split_value_sets(mapping.loc[code, "code_value_sets"])) == set(names)


def test_codes_outside_configured_systems_are_excluded(hedis_codebook):
    mapping = ValueSetMapper(code_systems=["HCPCS"]).build_mapping(hedis_codebook)

    assert "E11.9" not in set(mapping["code"])
    assert "99213" not in set(mapping["code"])


def test_conflicting_definitions_raise(hedis_codebook):
    conflicting = pd.concat([
        hedis_codebook,
        pd.DataFrame({
            "Value Set Name": ["Well-Care"],
            "Value Set OID": ["2.16.9"],
            "Code": ["G0101"],
            "Definition": ["Cervical or vaginal cancer screening"],
            "Code System": ["HCPCS"],
        }),
    ], ignore_index=True)

    with pytest.raises(InvariantViolation) as excinfo:
        ValueSetMapper().build_mapping(conflicting)

    assert excinfo.value.offending == ["G0101"]


def test_join_keeps_first_seen_order_without_duplicates():
    names = pd.Series(["Preventive Visits", "Cervical Cancer Screening", "Preventive Visits"])

    assert join_value_sets(names) == "Preventive Visits | Cervical Cancer Screening"


@pytest.mark.parametrize("value", [None, pd.NA, ""])
def test_split_empty_value_sets(value):
    assert split_value_sets(value) == []
