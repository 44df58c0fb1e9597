from __future__ import annotations

import argparse
import csv
from pathlib import Path
from typing import Iterable

import yaml

DEFAULT_OUTPUT = Path("data/banks.yml")
DELIMITERS = ",;\t"


def _normalize_name(raw: str) -> str | None:
    name = " ".join((raw or "").split())
    return name or None


def _iter_rows(path: Path) -> Iterable[dict[str, str]]:
    with path.open("r", encoding="utf-8-sig") as fh:
        sample = fh.read(4096)
        fh.seek(0)
        try:
            dialect = csv.Sniffer().sniff(sample, delimiters=DELIMITERS)
        except csv.Error:
            dialect = csv.get_dialect("excel")
        try:
            has_header = csv.Sniffer().has_header(sample)
        except csv.Error:
            has_header = True

        if has_header:
            reader = csv.DictReader(fh, dialect=dialect)
            for row in reader:
                yield {k.strip().upper(): (v or "").strip() for k, v in row.items() if k}
        else:
            reader = csv.reader(fh, dialect=dialect)
            for row in reader:
                if not row:
                    continue
                name = row[0] if len(row) > 0 else ""
                code = row[1] if len(row) > 1 else ""
                yield {"NAME": name, "CODE": code}


def load_csv(path: Path) -> list[str]:
    """Bank display names, ``"Name (CODE)"`` when a short code is given."""

    banks: list[str] = []
    for row in _iter_rows(path):
        name = _normalize_name(row.get("NAME") or row.get("BANK") or "")
        if not name:
            continue
        code = _normalize_name(row.get("CODE", ""))
        label = f"{name} ({code.upper()})" if code and code.upper() not in name.upper() else name
        if label not in banks:
            banks.append(label)
    return banks


def write_yaml(banks: list[str], output: Path) -> None:
    output.parent.mkdir(parents=True, exist_ok=True)
    with output.open("w", encoding="utf-8") as fh:
        yaml.safe_dump({"banks": banks}, fh, allow_unicode=True, sort_keys=False)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Import payout bank list from CSV")
    parser.add_argument("input", type=Path, help="CSV with NAME and optional CODE column")
    parser.add_argument(
        "--out",
        type=Path,
        default=DEFAULT_OUTPUT,
        help="Output YAML file (default: data/banks.yml)",
    )
    args = parser.parse_args(argv)

    banks = load_csv(args.input)
    write_yaml(banks, args.out)
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
