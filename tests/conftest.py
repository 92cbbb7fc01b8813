"""
Synthetic reference files, rosters and claims for the pipeline tests
"""
import io
import os
import zipfile
from pathlib import Path
from typing import List, Tuple

import pandas as pd
import pytest

from config.settings import ReferenceConfig
from src.extractors.excel_extractor import CodeSourceReader


def write_rvu_archive(path: Path, rows: List[Tuple[str, str]], pad: bool = True) -> Path:
    """Zip a PPRRVU workbook laid out like the CMS release (9 banner rows, then a header)"""
    sheet = [
        [f"CMS PPRRVU release notes line {i + 1}", None, None, None]
        for i in range(ReferenceConfig.RVU_SKIP_ROWS)
    ]
    sheet.append(["HCPCS", "MOD", "DESCRIPTION", "STATUS CODE"])
    sheet.extend([[code, None, description, "A"] for code, description in rows])

    workbook = io.BytesIO()
    pd.DataFrame(sheet).to_excel(workbook, header=False, index=False)

    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("PPRRVU_JAN_nonQPP.xlsx", workbook.getvalue())
        zf.writestr("RVUPUF_readme.txt", "Relative value files")
        if pad:
            # Incompressible padding above the failed-download size floor
            zf.writestr("OPPSCAP_JAN.bin", os.urandom(ReferenceConfig.MIN_ARCHIVE_BYTES + 4096))
    return path


def write_hcpcs_current(path: Path, rows: List[Tuple[str, str]]) -> Path:
    pd.DataFrame({
        "HCPC": [code for code, _ in rows],
        "SEQNUM": ["0010"] * len(rows),
        "RECID": ["3"] * len(rows),
        "LONG DESCRIPTION": [description for _, description in rows],
        "SHORT DESCRIPTION": ["short"] * len(rows),
    }).to_excel(path, index=False)
    return path


def write_hedis_codebook(path: Path, codebook: pd.DataFrame) -> Path:
    with pd.ExcelWriter(path) as writer:
        pd.DataFrame({"Measure": ["Cervical Cancer Screening"]}).to_excel(
            writer, sheet_name="Measures to Value Sets", index=False
        )
        codebook.to_excel(writer, sheet_name=ReferenceConfig.HEDIS_SHEET, index=False)
    return path


@pytest.fixture
def rvu_archive_writer():
    return write_rvu_archive


@pytest.fixture
def hedis_codebook() -> pd.DataFrame:
    return pd.DataFrame({
        "Value Set Name": [
            "Cervical Cancer Screening", "Preventive Visits", "Outpatient",
            "Alcohol and Drug Assessment", "Diabetes",
        ],
        "Value Set OID": ["2.16.1", "2.16.2", "2.16.3", "2.16.4", "2.16.5"],
        "Code": ["G0101", "G0101", "99213", "H0001", "E11.9"],
        "Definition": [
            "Ca screen;pelvic/breast exam", "Ca screen;pelvic/breast exam",
            "Office o/p est low 20 min", "Alcohol and/or drug assessment",
            "Type 2 diabetes mellitus without complications",
        ],
        "Code System": ["HCPCS", "HCPCS", "CPT", "HCPCS", "ICD10CM"],
    })


@pytest.fixture
def reference_files(tmp_path, hedis_codebook) -> dict:
    """RVU 2022 and 2024 archives (2023 absent), the current dictionary and the codebook"""
    historical = tmp_path / "historical"
    historical.mkdir()
    write_rvu_archive(historical / "RVU22A.zip", [
        ("99213", "Office/outpatient visit est"),
        ("G0101", "CA screen; pelvic/breast exam"),
        ("0001F", "Heart failure composite"),
    ])
    write_rvu_archive(historical / "RVU24A.zip", [
        ("99213", "Office o/p est low 20 min"),
        ("99499", ""),
    ])
    return {
        "rvu_archive_dir": historical,
        "hcpcs_current_xlsx": write_hcpcs_current(tmp_path / "HCPC2026_JAN.xlsx", [
            ("G0101", "Ca screen;pelvic/breast exam"),
            ("H0001", "Alcohol and/or drug assessment"),
        ]),
        "hedis_codebook_xlsx": write_hedis_codebook(tmp_path / "hedis.xlsx", hedis_codebook),
    }


@pytest.fixture
def code_reader(reference_files) -> CodeSourceReader:
    return CodeSourceReader(rvu_years=["22", "23", "24"], **reference_files)


@pytest.fixture
def roster() -> pd.DataFrame:
    return pd.DataFrame({
        "NPI": ["1111111111", "2222222222"],
        "Name": ["Chestnut Health Systems", "Jane Doe"],
        "Taxonomy": ["261QF0400X  12345", "101YA0400X"],
        "LocationAddress1": ["1003 Martin Luther King Dr", "50 Main St"],
        "LocationAddress2": [None, "Suite 2"],
        "LocationCity": ["Bloomington", "Granite City"],
        "LocationState": ["IL", "IL"],
        "LocationZip": ["61701", "62040"],
    })


@pytest.fixture
def taxonomy_ref() -> pd.DataFrame:
    return pd.DataFrame({
        "Code": ["261QF0400X", "101YA0400X"],
        "Grouping": ["Ambulatory Health Care Facilities", "Behavioral Health & Social Service Providers"],
        "Classification": ["Clinic/Center", "Counselor"],
        "Specialization": ["Federally Qualified Health Center (FQHC)", "Addiction (Substance Use Disorder)"],
        "Display Name": ["Federally Qualified Health Center (FQHC)", "Addiction (Substance Use Disorder) Counselor"],
        "Section": ["Non-Individual", "Individual"],
    })


@pytest.fixture
def claims() -> pd.DataFrame:
    """One billing match, one servicing match, one claim outside the roster"""
    return pd.DataFrame({
        "BILLING_PROVIDER_NPI_NUM": ["1111111111", "8888888888", "7777777777"],
        "SERVICING_PROVIDER_NPI_NUM": ["9999999999", "2222222222", "6666666666"],
        "HCPCS_CODE": ["99213", "XX999", "99213"],
        "CLAIM_FROM_MONTH": ["2023-01", "2023-02", "2023-03"],
        "TOTAL_UNIQUE_BENEFICIARIES": [12, 3, 40],
        "TOTAL_CLAIMS": [15, 4, 52],
        "TOTAL_PAID": [1250.50, 88.00, 4100.25],
    })


@pytest.fixture
def claims_parquet(tmp_path, claims) -> Path:
    path = tmp_path / "medicaid-provider-spending.parquet"
    claims.to_parquet(path, index=False, engine="pyarrow")
    return path


@pytest.fixture
def code_lookup() -> pd.DataFrame:
    return pd.DataFrame({
        "code": ["99213", "G0101", "H0001"],
        "description": ["Office o/p est low 20 min", "Ca screen;pelvic/breast exam", "Alcohol and/or drug assessment"],
        "code_type": ["CPT", "HCPCS_Level_II", "HCPCS_Level_II"],
        "source": ["RVU2024A", "HCPC2026_JAN", "HCPC2026_JAN"],
        "year": ["2024", "2026", "2026"],
    })
