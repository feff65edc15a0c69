import json

from receipt_ingest.cli.main import main


def test_cli_prints_json(tmp_path, kaufland_pdf, capsys) -> None:
    path = tmp_path / "bon.pdf"
    path.write_bytes(kaufland_pdf)

    code = main([str(path), "--json", "--rules", str(tmp_path / "none.json")])

    assert code == 0
    out = json.loads(capsys.readouterr().out)
    assert out[0]["store_name"] == "KAUFLAND"
    assert out[0]["items"][0]["category"] == "coffee"


def test_cli_stores_exports_and_reports(tmp_path, kaufland_pdf, pdf_factory, capsys) -> None:
    incoming = tmp_path / "incoming"
    incoming.mkdir()
    (incoming / "a.pdf").write_bytes(kaufland_pdf)
    (incoming / "b.pdf").write_bytes(pdf_factory(["LIDL", "CROISSANT 6,50", "TOTAL 6,50"]))
    db = tmp_path / "receipts.sqlite"
    csv_path = tmp_path / "items.csv"
    report = tmp_path / "spending.pdf"

    code = main([str(incoming), "--db", str(db), "--csv", str(csv_path), "--report", str(report),
                 "--rules", str(tmp_path / "none.json")])

    assert code == 0
    assert db.exists()
    assert csv_path.read_text(encoding="utf-8").count("\n") == 3
    assert report.read_bytes().startswith(b"%PDF")
    assert "[OK] Processed 2 receipt(s)" in capsys.readouterr().err


def test_cli_reports_duplicates_with_nonzero_exit(tmp_path, kaufland_pdf, capsys) -> None:
    path = tmp_path / "bon.pdf"
    path.write_bytes(kaufland_pdf)
    db = tmp_path / "receipts.sqlite"
    args = [str(path), "--db", str(db), "--rules", str(tmp_path / "none.json")]

    assert main(args) == 0
    assert main(args) == 1
    assert "bon.pdf" in capsys.readouterr().err


def test_cli_report_requires_db(tmp_path, monkeypatch) -> None:
    monkeypatch.delenv("RECEIPT_DB", raising=False)

    assert main(["--report", str(tmp_path / "r.pdf")]) == 2


def test_cli_reports_malformed_rules_cleanly(tmp_path, kaufland_pdf, capsys) -> None:
    path = tmp_path / "bon.pdf"
    path.write_bytes(kaufland_pdf)
    rules = tmp_path / "rules.json"
    rules.write_text('{"item_categories": [', encoding="utf-8")

    code = main([str(path), "--rules", str(rules)])

    assert code == 2
    err = capsys.readouterr().err
    assert err.startswith("[ERROR] Invalid rules file")
    assert "Traceback" not in err
