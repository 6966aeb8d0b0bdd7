"""
Precursor mass-balance reconciliation engine.

Turns import/export records into per-entity ledgers of stick-equivalent
capacity, audits each entity against its scarcest precursor and rolls the
ledgers up into a national summary. Nothing here raises on bad record
content: unparsable quantities, unknown units and unknown materials fall back
to neutral values.
"""

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum


class MaterialCategory(Enum):
    TOBACCO = 'TOBACCO'
    TOW = 'TOW'
    PAPER = 'PAPER'
    RODS = 'RODS'
    CIGARETTES = 'CIGARETTES'
    UNCLASSIFIED = 'UNCLASSIFIED'


class RiskStatus(Enum):
    CRITICAL = 'CRITICAL'
    RECONCILED = 'RECONCILED'


class Violation(Enum):
    ZERO_TOBACCO = 'ZERO_TOBACCO'
    OVER_CAP = 'OVER_CAP'
    NONE = 'NONE'


UNIT_MULTIPLIERS = {
    'MIL': 1000,
    'KGM': 1,
    'KG': 1,
    'TON': 1000,
    'MT': 1000,
    'CASE': 10000,
}

# Sticks per normalized unit (kg for leaf, tow and paper; pieces for rods)
YIELD_RATIOS = {
    MaterialCategory.TOBACCO: 1333.33,
    MaterialCategory.TOW: 8333.33,
    MaterialCategory.PAPER: 20000,
    MaterialCategory.RODS: 6,
}

PRECURSORS = (
    MaterialCategory.TOBACCO,
    MaterialCategory.TOW,
    MaterialCategory.PAPER,
    MaterialCategory.RODS,
)

FINISHED_MIL_STICKS = 1_000_000
EXPORT_CARTON_STICKS = 1000
EXCISE_PER_STICK = 0.15
DEFAULT_RISK_SENSITIVITY = 10.0

# Evaluated top to bottom, first match wins. Order matters: "cigarette paper"
# must land on PAPER before the CIGARETTES rule sees it, and "tobacco rod"
# counts as leaf.
MATERIAL_RULES = [
    {'contains': 'TOBACCO', 'excludes': None, 'category': MaterialCategory.TOBACCO},
    {'contains': 'TOW', 'excludes': None, 'category': MaterialCategory.TOW},
    {'contains': 'PAPER', 'excludes': None, 'category': MaterialCategory.PAPER},
    {'contains': 'ROD', 'excludes': None, 'category': MaterialCategory.RODS},
    {'contains': 'CIGARETTE', 'excludes': 'PAPER', 'category': MaterialCategory.CIGARETTES},
]


@dataclass(frozen=True)
class RecordFields:
    """Source column names for the fields of a raw record."""
    entity: tuple[str, ...] = ('Entity', 'Importer', 'Exporter')
    material: str = 'Material'
    quantity: str = 'Quantity'
    unit: str = 'Quantity Unit'


DEFAULT_FIELDS = RecordFields()


# ── Unit normalizer ──────────────────────────────────────────────────────


def _text(value) -> str:
    if value is None:
        return ''
    if isinstance(value, float) and math.isnan(value):
        return ''
    return str(value)


def parse_quantity(value) -> float:
    text = _text(value).replace(',', '').strip()
    try:
        qty = float(text)
    except ValueError:
        return 0.0
    if math.isnan(qty) or math.isinf(qty):
        return 0.0
    return abs(qty)


def unit_multiplier(unit) -> float:
    return UNIT_MULTIPLIERS.get(_text(unit).strip().upper(), 1)


def normalize_quantity(value, unit) -> float:
    return parse_quantity(value) * unit_multiplier(unit)


# ── Classifier and stick conversion ──────────────────────────────────────


def classify_material(description) -> MaterialCategory:
    text = _text(description).upper()
    for rule in MATERIAL_RULES:
        if rule['contains'] not in text:
            continue
        if rule['excludes'] and rule['excludes'] in text:
            continue
        return rule['category']
    return MaterialCategory.UNCLASSIFIED


def stick_equivalent(category: MaterialCategory, value, unit) -> float:
    """Convert one record's quantity to stick-equivalents.

    Finished cigarettes reported in MIL bypass the unit table and are read as
    raw quantity x 1,000,000; any other unit goes through the table and is
    scaled by the export-carton factor of 1000.
    """
    if category is MaterialCategory.CIGARETTES:
        if _text(unit).strip().upper() == 'MIL':
            return parse_quantity(value) * FINISHED_MIL_STICKS
        return normalize_quantity(value, unit) * EXPORT_CARTON_STICKS
    ratio = YIELD_RATIOS.get(category)
    if ratio is None:
        return 0.0
    return normalize_quantity(value, unit) * ratio


# ── Entity aggregator ────────────────────────────────────────────────────


@dataclass
class MaterialTally:
    raw_quantity: float = 0.0
    normalized_quantity: float = 0.0
    sticks: float = 0.0
    unit: str = ''


@dataclass
class EntityLedger:
    name: str
    tobacco: float = 0.0
    tow: float = 0.0
    paper: float = 0.0
    rods: float = 0.0
    actual: float = 0.0
    transactions: int = 0
    materials: dict[MaterialCategory, MaterialTally] = field(default_factory=dict)

    def precursors(self) -> dict[MaterialCategory, float]:
        return {
            MaterialCategory.TOBACCO: self.tobacco,
            MaterialCategory.TOW: self.tow,
            MaterialCategory.PAPER: self.paper,
            MaterialCategory.RODS: self.rods,
        }

    def add(self, category: MaterialCategory, raw_quantity: float, unit: str) -> float:
        """Fold one classified record into the ledger and return its sticks."""
        self.transactions += 1
        if category is MaterialCategory.UNCLASSIFIED:
            return 0.0

        sticks = stick_equivalent(category, raw_quantity, unit)
        if category is MaterialCategory.CIGARETTES:
            self.actual += sticks
        else:
            attr = category.value.lower()
            setattr(self, attr, getattr(self, attr) + sticks)

        tally = self.materials.setdefault(category, MaterialTally())
        tally.raw_quantity += raw_quantity
        tally.normalized_quantity += normalize_quantity(raw_quantity, unit)
        tally.sticks += sticks
        tally.unit = unit
        return sticks


def resolve_entity(record: Mapping, fields: RecordFields = DEFAULT_FIELDS) -> str | None:
    for name in fields.entity:
        value = _text(record.get(name)).strip()
        if value:
            return value
    return None


def build_ledgers(records: Iterable[Mapping], fields: RecordFields = DEFAULT_FIELDS) -> dict[str, EntityLedger]:
    ledgers: dict[str, EntityLedger] = {}
    for record in records:
        entity = resolve_entity(record, fields)
        if entity is None:
            continue
        ledger = ledgers.get(entity)
        if ledger is None:
            ledger = ledgers[entity] = EntityLedger(name=entity)
        category = classify_material(record.get(fields.material))
        ledger.add(
            category,
            parse_quantity(record.get(fields.quantity)),
            _text(record.get(fields.unit)).strip().upper(),
        )
    return ledgers


# ── Ceiling, reliability and risk ────────────────────────────────────────


@dataclass(frozen=True)
class EntityAudit:
    name: str
    transactions: int
    tobacco: float
    tow: float
    paper: float
    rods: float
    actual: float
    ceiling: float
    max_potential: float
    reliability: float
    threshold: float
    risk: RiskStatus
    violation: Violation

    def as_dict(self) -> dict:
        return {
            'Entity': self.name,
            'Transactions': self.transactions,
            'Tobacco': self.tobacco,
            'Tow': self.tow,
            'Paper': self.paper,
            'Rods': self.rods,
            'Ceiling': self.ceiling,
            'MaxPotential': self.max_potential,
            'Reliability': self.reliability,
            'Threshold': self.threshold,
            'Actual': self.actual,
            'Risk': self.risk.value,
            'Violation': self.violation.value,
        }


def precursor_bounds(ledger: EntityLedger) -> tuple[float, float]:
    """Return (ceiling, max_potential) over the positive precursor values."""
    positive = [v for v in ledger.precursors().values() if v > 0]
    if not positive:
        return 0.0, 0.0
    return min(positive), max(positive)


def reliability_pct(ceiling: float, max_potential: float) -> float:
    if max_potential == 0:
        return 100.0
    return 100 - ((max_potential - ceiling) / max_potential * 100)


def derive_audit(ledger: EntityLedger, sensitivity: float = DEFAULT_RISK_SENSITIVITY) -> EntityAudit:
    ceiling, max_potential = precursor_bounds(ledger)
    threshold = ceiling * (1 + sensitivity / 100)

    zero_tobacco = ledger.actual > 0 and ledger.tobacco == 0
    over_cap = ledger.actual > threshold
    if zero_tobacco:
        violation = Violation.ZERO_TOBACCO
    elif over_cap:
        violation = Violation.OVER_CAP
    else:
        violation = Violation.NONE

    return EntityAudit(
        name=ledger.name,
        transactions=ledger.transactions,
        tobacco=ledger.tobacco,
        tow=ledger.tow,
        paper=ledger.paper,
        rods=ledger.rods,
        actual=ledger.actual,
        ceiling=ceiling,
        max_potential=max_potential,
        reliability=reliability_pct(ceiling, max_potential),
        threshold=threshold,
        risk=RiskStatus.CRITICAL if (zero_tobacco or over_cap) else RiskStatus.RECONCILED,
        violation=violation,
    )


def audit_entities(ledgers: Mapping[str, EntityLedger], sensitivity: float = DEFAULT_RISK_SENSITIVITY) -> list[EntityAudit]:
    audits = [derive_audit(ledger, sensitivity) for ledger in ledgers.values()]
    return sorted(audits, key=lambda a: (-a.actual, a.name))


def filter_audits(audits: Iterable[EntityAudit], term: str | None) -> list[EntityAudit]:
    needle = (term or '').strip().lower()
    return [a for a in audits if needle in a.name.lower()]


def audit_totals(audits: Iterable[EntityAudit]) -> dict[str, float]:
    totals = {'transactions': 0, 'actual': 0.0, 'ceiling': 0.0}
    for a in audits:
        totals['transactions'] += a.transactions
        totals['actual'] += a.actual
        totals['ceiling'] += a.ceiling
    return totals


# ── National aggregator ──────────────────────────────────────────────────


@dataclass(frozen=True)
class NationalSummary:
    entities: int
    transactions: int
    tobacco: float
    tow: float
    paper: float
    rods: float
    actual: float
    tobacco_kg: float
    tow_kg: float
    paper_kg: float
    rods_units: float
    gap: float
    shadow_prob: float
    tax_loss: float

    @property
    def limiting_factor(self) -> str:
        return 'Tobacco' if self.tobacco < self.tow else 'Acetate Tow'

    @property
    def ceiling_excess_pct(self) -> float:
        """Output above the scarcest of leaf, tow and paper, as a percentage."""
        potential = min(self.tobacco, self.tow, self.paper)
        if potential <= 0:
            return 0.0
        return max(0.0, (self.actual / potential - 1) * 100)


def summarize_nation(ledgers: Mapping[str, EntityLedger]) -> NationalSummary:
    totals = {'tobacco': 0.0, 'tow': 0.0, 'paper': 0.0, 'rods': 0.0, 'actual': 0.0}
    normalized = {category: 0.0 for category in PRECURSORS}
    transactions = 0

    for ledger in ledgers.values():
        for key in totals:
            totals[key] += getattr(ledger, key)
        for category, tally in ledger.materials.items():
            if category in normalized:
                normalized[category] += tally.normalized_quantity
        transactions += ledger.transactions

    gap = max(0.0, totals['actual'] - totals['tobacco'])
    shadow_prob = (gap / totals['actual']) * 100 if totals['actual'] > 0 else 0.0

    return NationalSummary(
        entities=len(ledgers),
        transactions=transactions,
        tobacco_kg=normalized[MaterialCategory.TOBACCO],
        tow_kg=normalized[MaterialCategory.TOW],
        paper_kg=normalized[MaterialCategory.PAPER],
        rods_units=normalized[MaterialCategory.RODS],
        gap=gap,
        shadow_prob=shadow_prob,
        tax_loss=gap * EXCISE_PER_STICK,
        **totals,
    )
