import re
from pathlib import Path

import yaml

from reconcile import DEFAULT_RISK_SENSITIVITY, RecordFields

URL_PATTERN = re.compile(r'^https?://', re.IGNORECASE)


class ConfigError(Exception):
    pass


def is_url(source) -> bool:
    return bool(URL_PATTERN.match(str(source)))


def load_config(config_path: str, input_override: str = None, output_dir_override: str = None,
                sensitivity_override: float = None) -> dict:
    config_path = Path(config_path).resolve()
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        config = yaml.safe_load(f) or {}

    base_dir = config_path.parent

    required_sections = ['client', 'paths', 'columns', 'audit']
    for section in required_sections:
        if section not in config:
            raise ConfigError(f"Missing required config section: '{section}'")

    required_paths = ['input', 'output_dir', 'output_prefix', 'archive']
    for key in required_paths:
        if key not in config['paths']:
            raise ConfigError(f"Missing required path: 'paths.{key}'")

    required_columns = ['entity', 'material', 'quantity', 'unit']
    for key in required_columns:
        if key not in config['columns']:
            raise ConfigError(f"Missing required column mapping: 'columns.{key}'")

    sensitivity = config['audit'].get('risk_sensitivity_pct', DEFAULT_RISK_SENSITIVITY)
    if sensitivity_override is not None:
        sensitivity = sensitivity_override
    try:
        config['audit']['risk_sensitivity_pct'] = float(sensitivity)
    except (TypeError, ValueError):
        raise ConfigError(f"audit.risk_sensitivity_pct must be numeric, got '{sensitivity}'")

    resolved = {}
    source = input_override or config['paths']['input']
    if is_url(source):
        resolved['input'] = source
    elif input_override:
        resolved['input'] = Path(input_override).resolve()
    else:
        resolved['input'] = (base_dir / source).resolve()
    resolved['output_dir'] = (base_dir / config['paths']['output_dir']).resolve()
    resolved['output_prefix'] = config['paths']['output_prefix']
    resolved['archive'] = (base_dir / config['paths']['archive']).resolve()

    if output_dir_override:
        resolved['output_dir'] = Path(output_dir_override).resolve()

    config['_resolved_paths'] = resolved

    if isinstance(resolved['input'], Path) and not resolved['input'].exists():
        raise ConfigError(f"File not found: {resolved['input']} (from paths.input)")

    return config


def record_fields(config: dict) -> RecordFields:
    cols = config['columns']
    entity = cols['entity']
    if isinstance(entity, str):
        entity = [entity]
    if not entity:
        raise ConfigError("columns.entity must name at least one column")
    return RecordFields(
        entity=tuple(str(c) for c in entity),
        material=str(cols['material']),
        quantity=str(cols['quantity']),
        unit=str(cols['unit']),
    )
