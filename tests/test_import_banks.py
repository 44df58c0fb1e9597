from pathlib import Path

from scripts.import_banks import load_csv, main
from zenith.banks import load_banks


def test_load_csv_builds_labels_and_dedupes(tmp_path: Path):
    src = tmp_path / "banks.csv"
    src.write_text(
        "NAME;CODE\nVietcombank;vcb\n  MB   Bank ;\nVietcombank;VCB\nTechcombank;TCB\n;XX\n",
        encoding="utf-8",
    )

    assert load_csv(src) == ["Vietcombank (VCB)", "MB Bank", "Techcombank (TCB)"]


def test_main_writes_catalogue_readable_by_bot(tmp_path: Path):
    src = tmp_path / "banks.csv"
    src.write_text("NAME,CODE\nAgribank,\nSacombank,STB\n", encoding="utf-8")
    out = tmp_path / "out" / "banks.yml"

    assert main([str(src), "--out", str(out)]) == 0
    assert load_banks(out) == ("Agribank", "Sacombank (STB)")
