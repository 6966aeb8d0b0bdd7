from pathlib import Path
import pytest
import yaml


ROOT = Path(__file__).parent.parent


def pytest_addoption(parser):
    parser.addoption(
        "--client-dir",
        default=str(ROOT / "clients" / "sample"),
        help="Path to client directory containing config.yaml and data/",
    )


@pytest.fixture(scope="session")
def client_dir(request):
    return Path(request.config.getoption("--client-dir")).resolve()


@pytest.fixture(scope="session")
def client_config(client_dir):
    config_path = client_dir / "config.yaml"
    with open(config_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f)


@pytest.fixture
def config(client_dir, tmp_path):
    from audit_config import load_config
    config = load_config(str(client_dir / "config.yaml"), output_dir_override=str(tmp_path / "output"))
    config["_resolved_paths"]["archive"] = tmp_path / "archive" / "snapshots.yaml"
    return config


@pytest.fixture
def fields(config):
    from audit_config import record_fields
    return record_fields(config)


@pytest.fixture
def records_df(config):
    from ingest import load_records
    return load_records(config["_resolved_paths"]["input"])


@pytest.fixture
def ledgers(records_df, fields):
    from ingest import iter_records
    from reconcile import build_ledgers
    return build_ledgers(iter_records(records_df), fields)
