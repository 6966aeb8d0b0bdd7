"""
End-to-end run against the client's sample records.

Expected sample outcomes:
  Alpha Tobacco Ltd    all four precursors ~2M sticks, 1.8 MIL exported -> RECONCILED
  Beta Trading         tow only, 0.2 MIL exported                       -> CRITICAL (zero tobacco)
  Gamma Manufacturing  1 TON leaf, 2000 KG cigarettes                    -> CRITICAL (over cap)
  Delta Imports        paper only (Importer column), no output           -> RECONCILED
"""

import pandas as pd
import pytest

from reconcile import RiskStatus, Violation, audit_entities, summarize_nation
from shadow_audit import main
from snapshot_store import SnapshotStore


class TestSampleAudit:

    def test_entities(self, ledgers):
        assert set(ledgers) == {"Alpha Tobacco Ltd", "Beta Trading", "Gamma Manufacturing", "Delta Imports"}
        assert ledgers["Alpha Tobacco Ltd"].transactions == 6

    def test_verdicts(self, ledgers):
        audits = {a.name: a for a in audit_entities(ledgers, 10)}
        assert audits["Alpha Tobacco Ltd"].risk is RiskStatus.RECONCILED
        assert audits["Alpha Tobacco Ltd"].ceiling == pytest.approx(1_999_995)
        assert audits["Alpha Tobacco Ltd"].reliability == pytest.approx(99.99975)
        assert audits["Beta Trading"].violation is Violation.ZERO_TOBACCO
        assert audits["Gamma Manufacturing"].violation is Violation.OVER_CAP
        assert audits["Delta Imports"].risk is RiskStatus.RECONCILED

    def test_sensitivity_rerun_uses_same_ledgers(self, ledgers):
        strict = {a.name: a.risk for a in audit_entities(ledgers, 10)}
        loose = {a.name: a.risk for a in audit_entities(ledgers, 60)}
        assert strict["Gamma Manufacturing"] is RiskStatus.CRITICAL
        assert loose["Gamma Manufacturing"] is RiskStatus.RECONCILED
        assert loose["Beta Trading"] is RiskStatus.CRITICAL

    def test_national_summary(self, ledgers):
        summary = summarize_nation(ledgers)
        assert summary.entities == 4
        assert summary.transactions == 11
        assert summary.tobacco == pytest.approx(3_333_325)
        assert summary.actual == pytest.approx(4_000_000)
        assert summary.gap == pytest.approx(666_675)
        assert summary.shadow_prob == pytest.approx(16.666875)
        assert summary.tax_loss == pytest.approx(100_001.25)
        assert summary.tobacco_kg == pytest.approx(2500)


class TestReport:

    def test_writes_workbook(self, config):
        output = main(config)
        assert output.exists()
        sheets = pd.read_excel(output, sheet_name=None)
        assert set(sheets) == {
            "Entity Audit", "Critical Entities", "Classified Records",
            "Material Balance", "Summary", "Unclassified Materials",
        }
        audit = sheets["Entity Audit"]
        assert audit["Entity"].iloc[0] == "Gamma Manufacturing"
        assert set(sheets["Critical Entities"]["Entity"]) == {"Beta Trading", "Gamma Manufacturing"}
        assert sheets["Unclassified Materials"]["Material"].tolist() == ["Menthol flavour concentrate"]

    def test_archive_title_saves_snapshot(self, config):
        main(config, archive_title="Sample run")
        snapshots = SnapshotStore(config["_resolved_paths"]["archive"]).entries()
        assert snapshots[0]["title"] == "Sample run"
        assert snapshots[0]["gap"] == pytest.approx(666_675)

    def test_search_prints_matching_totals(self, config, capsys):
        main(config, search="gamma")
        out = capsys.readouterr().out
        assert "Entities matching 'gamma': 1" in out
        assert "Beta Trading" not in out
