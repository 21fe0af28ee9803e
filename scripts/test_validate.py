#!/usr/bin/env python3
"""
Test suite for the command line tool.

Runs main() with patched argv and checks exit codes and output.
"""

import json
import sys

import pytest
import yaml

import validate
from rule_set import clear_cache


PASSING = "<Flights><GetSectors/></Flights>"
FAILING = '<Roster><Crew staffNumber="9999"/></Roster>'


@pytest.fixture(autouse=True)
def _fresh_cache():
    clear_cache()
    yield
    clear_cache()


def run_cli(monkeypatch, *argv):
    monkeypatch.setattr(sys, "argv", ["validate.py", *argv])
    return validate.main()


@pytest.fixture
def docs(tmp_path):
    directory = tmp_path / "docs"
    directory.mkdir()
    return directory


def test_run_all_passing(monkeypatch, capsys, docs, tmp_path):
    (docs / "a.xml").write_text(PASSING)

    code = run_cli(monkeypatch, "run", str(docs), "--report-dir", str(tmp_path / "out"))

    out = capsys.readouterr().out
    assert code == 0
    assert "Processed: a.xml" in out
    assert "Passed: 1" in out
    assert "Failed: 0" in out
    assert len(list((tmp_path / "out").glob("report-*.txt"))) == 1


def test_run_with_failures_exits_one(monkeypatch, capsys, docs, tmp_path):
    (docs / "a.xml").write_text(PASSING)
    (docs / "b.xml").write_text(FAILING)

    code = run_cli(monkeypatch, "run", str(docs), "--report-dir", str(tmp_path))

    assert code == 1
    assert "Failed: 1" in capsys.readouterr().out


def test_run_json_summary(monkeypatch, capsys, docs, tmp_path):
    (docs / "a.xml").write_text(PASSING)

    code = run_cli(monkeypatch, "run", str(docs), "--report-dir", str(tmp_path), "--json")

    summary = json.loads(capsys.readouterr().out)
    assert code == 0
    assert summary["passed"] == 1
    assert summary["failed"] == 0
    assert summary["logs"][-1] == "All files processed!"


def test_run_missing_directory(monkeypatch, capsys, tmp_path):
    code = run_cli(monkeypatch, "run", str(tmp_path / "missing"), "--report-dir", str(tmp_path))

    assert code == 1
    assert "[ERROR] Directory not found" in capsys.readouterr().err


def test_run_no_xml_files(monkeypatch, capsys, docs, tmp_path):
    (docs / "readme.txt").write_text("nothing here")

    code = run_cli(monkeypatch, "run", str(docs), "--report-dir", str(tmp_path))

    assert code == 1
    assert "[ERROR] No .xml files found" in capsys.readouterr().err


def test_run_extension_override(monkeypatch, capsys, docs, tmp_path):
    (docs / "a.msg").write_text(PASSING)

    code = run_cli(monkeypatch, "run", str(docs), "--report-dir", str(tmp_path),
                   "--extension", ".msg")

    assert code == 0


def test_check_file_pass(monkeypatch, capsys, docs):
    path = docs / "a.xml"
    path.write_text(PASSING)

    code = run_cli(monkeypatch, "check-file", str(path))

    out = capsys.readouterr().out
    assert code == 0
    assert out.startswith("File: a.xml\n")
    assert "Tag found (global): GetSectors" in out
    assert "Verdict: PASS" in out


def test_check_file_fail(monkeypatch, capsys, docs):
    path = docs / "b.xml"
    path.write_text(FAILING)

    code = run_cli(monkeypatch, "check-file", str(path))

    out = capsys.readouterr().out
    assert code == 1
    assert "Attribute mismatch (global): staffNumber found 9999" in out
    assert "Verdict: FAIL" in out


def test_check_file_missing(monkeypatch, capsys, docs):
    code = run_cli(monkeypatch, "check-file", str(docs / "missing.xml"))

    assert code == 1
    assert "[ERROR] File not found" in capsys.readouterr().err


def test_check_rules_default(monkeypatch, capsys):
    code = run_cli(monkeypatch, "check-rules")

    assert code == 0
    assert "2 rule sets" in capsys.readouterr().out


def test_check_rules_invalid(monkeypatch, capsys, tmp_path):
    rules = tmp_path / "rules.yaml"
    rules.write_text("schema_version: 2\nrule_sets: []\n")

    code = run_cli(monkeypatch, "check-rules", "--rules", str(rules))

    assert code == 1
    assert "[ERROR] Failed to load validation rules" in capsys.readouterr().err


def test_show_rules_with_strategy_override(monkeypatch, capsys):
    code = run_cli(monkeypatch, "show-rules", "--strategy", "structural")

    out = capsys.readouterr().out
    assert code == 0
    effective = yaml.safe_load(out.split("\n\n", 1)[1])
    assert effective["classifier"]["strategy"] == "structural"
    assert effective["rule_sets"][0]["name"] == "global"


def test_unknown_strategy_rejected_by_argparse(monkeypatch):
    with pytest.raises(SystemExit):
        run_cli(monkeypatch, "show-rules", "--strategy", "guess")
