"""
Shadow Sourcing Audit CLI

Mass-balance reconciliation of tobacco precursor imports against cigarette
exports. Every entity's output is checked against the capacity supported by
its scarcest precursor (leaf, acetate tow, paper, filter rods), and the
national gap between exports and leaf imports is priced at the excise rate.

Usage:
    python src/shadow_audit.py --config clients/sample/config.yaml
    python src/shadow_audit.py --config clients/sample/config.yaml --sensitivity 25
    python src/shadow_audit.py --config clients/sample/config.yaml --input https://docs.google.com/spreadsheets/d/<id>/edit#gid=0
    python src/shadow_audit.py --config clients/sample/config.yaml --archive-title "Q3 review"
    python src/shadow_audit.py --config clients/sample/config.yaml --list-archive
"""

import sys
import time
import argparse
from collections import Counter
from datetime import datetime

import pandas as pd

from audit_config import ConfigError, load_config, record_fields
from ingest import annotate_records, check_columns, iter_records, load_records
from reconcile import (
    EXCISE_PER_STICK,
    MaterialCategory,
    RiskStatus,
    audit_entities,
    audit_totals,
    build_ledgers,
    filter_audits,
    summarize_nation,
)
from snapshot_store import SnapshotError, SnapshotStore


def material_balance_frame(summary) -> pd.DataFrame:
    return pd.DataFrame({
        'Material': ['Raw Tobacco', 'Acetate Tow', 'Cig. Paper', 'Filter Rods', 'Actual Exports'],
        'Quantity': [summary.tobacco_kg, summary.tow_kg, summary.paper_kg, summary.rods_units, None],
        'Unit': ['KG', 'KG', 'KG', 'PCS', 'STICKS'],
        'StickEquivalent': [summary.tobacco, summary.tow, summary.paper, summary.rods, summary.actual],
    })


def summary_frame(summary, audits, sensitivity: float, total_rows: int) -> pd.DataFrame:
    risk_counts = Counter(a.risk for a in audits)
    critical = risk_counts.get(RiskStatus.CRITICAL, 0)
    reconciled = risk_counts.get(RiskStatus.RECONCILED, 0)
    n_entities = max(len(audits), 1)

    return pd.DataFrame({
        'Metric': [
            'Total Records',
            'Entities',
            'Risk Sensitivity',
            '--- Risk ---',
            'Critical',
            'Reconciled',
            '--- National Balance (sticks) ---',
            'Tobacco',
            'Acetate Tow',
            'Cigarette Paper',
            'Filter Rods',
            'Actual Exports',
            'Limiting Factor',
            'Production Above Ceiling',
            '--- Shadow Sourcing ---',
            'Production Gap',
            'Shadow Sourcing Probability',
            f'Estimated Tax Loss (@ {EXCISE_PER_STICK}/stick)',
        ],
        'Value': [
            f"{total_rows:,}",
            f"{summary.entities:,}",
            f"{sensitivity:g}%",
            '',
            f"{critical:,} ({critical/n_entities*100:.1f}%)",
            f"{reconciled:,} ({reconciled/n_entities*100:.1f}%)",
            '',
            f"{summary.tobacco:,.0f}",
            f"{summary.tow:,.0f}",
            f"{summary.paper:,.0f}",
            f"{summary.rods:,.0f}",
            f"{summary.actual:,.0f}",
            summary.limiting_factor,
            f"{summary.ceiling_excess_pct:.2f}%",
            '',
            f"{summary.gap:,.0f}",
            f"{summary.shadow_prob:.2f}%",
            f"{summary.tax_loss:,.2f}",
        ],
    })


def list_archive(config: dict):
    store = SnapshotStore(config['_resolved_paths']['archive'])
    snapshots = store.entries()
    print(f"Archived reports ({len(snapshots)}) in {store.path}")
    for snap in snapshots:
        print(f"  {snap['date']:20s} {snap['title']:30s} "
              f"shadow {snap['shadow_prob']:6.2f}%  gap {snap['gap']:>16,.0f}")


def main(config: dict, archive_title: str = None, search: str = None):
    paths = config['_resolved_paths']
    sensitivity = config['audit']['risk_sensitivity_pct']
    client_name = config['client']['name']
    fields = record_fields(config)

    paths['output_dir'].mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
    output_xlsx = paths['output_dir'] / f"{paths['output_prefix']}_{timestamp}.xlsx"

    t_start = time.perf_counter()

    print("=" * 70)
    print(f"{client_name} PRECURSOR MASS-BALANCE AUDIT")
    print("=" * 70)

    print(f"\nLoading records from {paths['input']}...")
    df = load_records(paths['input'])
    total_rows = len(df)
    print(f"  Loaded {total_rows:,} rows, {len(df.columns)} columns")

    if total_rows == 0:
        raise ConfigError(f"Input CSV has 0 data rows: {paths['input']}")

    check_columns(df, fields)
    if fields.unit not in df.columns:
        print(f"  WARNING: Unit column '{fields.unit}' not found; all quantities read with multiplier 1")

    # ── Reconciliation ──────────────────────────────────────────────────
    print(f"\nReconciling (risk sensitivity {sensitivity:g}%)...")
    t_audit = time.perf_counter()

    annotated = annotate_records(df, fields)
    category_counts = annotated['Category'].value_counts().to_dict()
    for category in MaterialCategory:
        count = category_counts.get(category.value, 0)
        if count > 0:
            print(f"  {category.value:14s} {count:>8,} rows")
    skipped = int((annotated['Status'] == 'Skipped (no entity)').sum())
    if skipped:
        print(f"  WARNING: {skipped:,} rows have no entity name and were skipped")

    ledgers = build_ledgers(iter_records(df), fields)
    audits = audit_entities(ledgers, sensitivity)
    summary = summarize_nation(ledgers)

    t_audit_end = time.perf_counter()
    print(f"  Audited {len(audits):,} entities in {t_audit_end - t_audit:.1f}s")

    # ── Excel report ────────────────────────────────────────────────────
    print(f"\nBuilding output Excel ({len(audits):,} entities)...")

    audit_df = pd.DataFrame(
        [a.as_dict() for a in audits],
        columns=list(audits[0].as_dict()) if audits else None,
    )
    if not audit_df.empty:
        audit_df['Reliability'] = audit_df['Reliability'].round(2)

    unclassified = Counter(
        annotated.loc[annotated['Category'] == MaterialCategory.UNCLASSIFIED.value, 'Material']
        .astype(str).str.strip().tolist()
    )

    with pd.ExcelWriter(output_xlsx, engine='openpyxl') as writer:
        audit_df.to_excel(writer, sheet_name='Entity Audit', index=False)

        if not audit_df.empty:
            critical_df = audit_df[audit_df['Risk'] == RiskStatus.CRITICAL.value]
            if not critical_df.empty:
                critical_df.to_excel(writer, sheet_name='Critical Entities', index=False)

        annotated.to_excel(writer, sheet_name='Classified Records', index=False)
        material_balance_frame(summary).to_excel(writer, sheet_name='Material Balance', index=False)
        summary_frame(summary, audits, sensitivity, total_rows).to_excel(writer, sheet_name='Summary', index=False)

        if unclassified:
            unclassified_data = [
                {'Material': material or '(blank)', 'Count': count}
                for material, count in unclassified.most_common()
            ]
            pd.DataFrame(unclassified_data).to_excel(writer, sheet_name='Unclassified Materials', index=False)

    if archive_title is not None:
        entry = SnapshotStore(paths['archive']).save(archive_title, summary)
        print(f"\nArchived snapshot '{entry['title']}' ({entry['date']})")

    t_end = time.perf_counter()

    print(f"\n{'='*70}")
    print("AUDIT COMPLETE")
    print(f"{'='*70}")
    print(f"Entities audited:     {len(audits):,}")
    print("\nNational Balance (stick-equivalents):")
    for label, value in [
        ('Tobacco', summary.tobacco),
        ('Acetate Tow', summary.tow),
        ('Cigarette Paper', summary.paper),
        ('Filter Rods', summary.rods),
        ('Actual Exports', summary.actual),
    ]:
        print(f"  {label:30s} {value:>20,.0f}")
    print(f"\n  Limiting factor:             {summary.limiting_factor}")
    print(f"  Production gap:              {summary.gap:,.0f}")
    print(f"  Shadow sourcing probability: {summary.shadow_prob:.2f}%")
    print(f"  Estimated tax loss:          {summary.tax_loss:,.2f}")

    shown = filter_audits(audits, search)
    if search:
        totals = audit_totals(shown)
        print(f"\nEntities matching '{search}': {len(shown):,}")
        print(f"  Aggregate actual {totals['actual']:,.0f}, "
              f"potential {totals['ceiling']:,.0f}, {totals['transactions']:,} TX")
    critical = [a for a in shown if a.risk is RiskStatus.CRITICAL]
    if critical:
        print(f"\nCritical entities: {len(critical):,}")
        for a in critical[:10]:
            print(f"  {a.name:40s} {a.violation.value:14s} actual {a.actual:>16,.0f}  ceiling {a.ceiling:>16,.0f}")
    print(f"\nTiming: audit {t_audit_end - t_audit:.1f}s, total {t_end - t_start:.1f}s")
    print(f"Output saved to: {output_xlsx}")

    return output_xlsx


if __name__ == "__main__":
    sys.stdout.reconfigure(encoding='utf-8')

    parser = argparse.ArgumentParser(
        description='Shadow Sourcing Audit CLI: reconcile tobacco precursor imports against cigarette exports'
    )
    parser.add_argument('--config', required=True, help='Path to client config YAML')
    parser.add_argument('--input', default=None, help='Override input CSV path or URL from config')
    parser.add_argument('--output-dir', default=None, help='Override output directory from config')
    parser.add_argument('--sensitivity', type=float, default=None, help='Override audit.risk_sensitivity_pct')
    parser.add_argument('--search', default=None, help='Only list entities whose name contains this text')
    parser.add_argument('--archive-title', default=None, help='Save the national summary to the snapshot archive')
    parser.add_argument('--list-archive', action='store_true', help='List archived snapshots and exit')
    args = parser.parse_args()

    try:
        config = load_config(args.config, args.input, args.output_dir, args.sensitivity)
        if args.list_archive:
            list_archive(config)
        else:
            main(config, archive_title=args.archive_title, search=args.search)
    except (ConfigError, SnapshotError) as e:
        print(f"ERROR: {e}")
        sys.exit(1)
