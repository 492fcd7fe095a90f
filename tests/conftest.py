"""
Pytest configuration and shared fixtures for Medea tests.

This module provides:
- Custom markers for test categorization
- Shared fixtures for test isolation (config, routing table, environment)
- Fake HTTP responses and Prometheus payloads
"""

import json
import tempfile
import shutil
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import requests


# =============================================================================
# Pytest Hooks and Configuration
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, no external dependencies)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (both services in process, fake clusters)"
    )


# =============================================================================
# Environment and Directory Fixtures
# =============================================================================

@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove Medea environment overrides so tests see only what they set."""
    from medea.utils.config import ENV_MAPPINGS

    for env_var in ENV_MAPPINGS:
        monkeypatch.delenv(env_var, raising=False)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files.

    Yields:
        Path: Path to temporary directory, cleaned up after test.
    """
    tmpdir = tempfile.mkdtemp(prefix="medea_test_")
    yield Path(tmpdir)
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def temp_config_dir(temp_dir, monkeypatch):
    """Create a temporary config directory and point the config file at it.

    Args:
        temp_dir: Temporary directory fixture
        monkeypatch: Pytest monkeypatch fixture

    Yields:
        Path: Path to .medea config directory
    """
    config_dir = temp_dir / ".medea"
    config_dir.mkdir(parents=True)
    config_file = config_dir / "config.yaml"

    monkeypatch.setattr("medea.utils.config.CONFIG_FILE", config_file)
    monkeypatch.setattr("medea.cmd.cli.config.CONFIG_FILE", config_file)
    monkeypatch.setenv("MEDEA_DB_PATH", str(temp_dir / "routing.db"))

    yield config_dir


# =============================================================================
# Configuration Fixtures
# =============================================================================

@pytest.fixture
def default_config(temp_dir):
    """Get a default config whose routing table lives in the temp dir.

    Returns:
        Config: Default configuration object
    """
    from medea.utils.config import Config

    config = Config()
    config.store.path = str(temp_dir / "routing.db")
    return config


@pytest.fixture
def config_file(temp_config_dir):
    """Create a test config file.

    Args:
        temp_config_dir: Temporary config directory fixture

    Returns:
        Path: Path to created config file
    """
    config_path = temp_config_dir / "config.yaml"
    config_content = """
logging:
  level: DEBUG
  verbose: true

scout:
  port: 18080
  prometheus_url: http://prometheus.test:9090
  seed: 3

balancer:
  port: 18000
  scout_url: http://scout.test:18080
"""
    config_path.write_text(config_content)
    return config_path


# =============================================================================
# Routing Table Fixtures
# =============================================================================

@pytest.fixture
def routing_table(temp_dir):
    """Create an initialized routing table in the temp dir.

    Returns:
        RoutingTable: Empty routing table
    """
    from medea.state.store import RoutingTable

    table = RoutingTable(temp_dir / "routing.db")
    table.init_db()
    return table


# =============================================================================
# HTTP Fakes
# =============================================================================

def fake_response(status_code=200, json_data=None, content=None, headers=None):
    """Build a MagicMock standing in for a requests.Response.

    Args:
        status_code: HTTP status code
        json_data: Decoded JSON body; when None, json() raises ValueError
        content: Raw body (defaults to json_data serialized)
        headers: Response headers (defaults to a JSON content type)
    """
    resp = MagicMock()
    resp.status_code = status_code

    if json_data is not None:
        resp.json.return_value = json_data
        if content is None:
            content = json.dumps(json_data).encode()
    else:
        resp.json.side_effect = ValueError("No JSON object could be decoded")

    resp.content = content or b""
    resp.text = resp.content.decode("utf-8", errors="replace")
    resp.headers = {"Content-Type": "application/json"} if headers is None else headers

    if status_code >= 400:
        resp.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status_code} Error")
    else:
        resp.raise_for_status.return_value = None
    return resp


@pytest.fixture
def make_response():
    """Factory fixture for fake requests responses."""
    return fake_response


@pytest.fixture
def mock_session():
    """A requests.Session stand-in with no default behaviour.

    Yields:
        MagicMock: Session whose get/post/request calls are configured per test
    """
    return MagicMock(spec=requests.Session)


def prometheus_vector(samples):
    """Build a successful Prometheus instant-vector answer.

    Args:
        samples: Mapping of cluster id to value
    """
    return {
        "status": "success",
        "data": {
            "resultType": "vector",
            "result": [
                {"metric": {"cluster": cluster}, "value": [1700000000.123, str(value)]}
                for cluster, value in samples.items()
            ],
        },
    }


@pytest.fixture
def make_vector():
    """Factory fixture for Prometheus instant-vector payloads."""
    return prometheus_vector


# =============================================================================
# Sample Data Fixtures
# =============================================================================

@pytest.fixture
def sample_parameters():
    """Spark-style parameters requesting 3 cores and 12.25 GB.

    Returns:
        list: submitOptions.parameters entries
    """
    return [
        "executor_num=2",
        "driver_cores_limit=1",
        "executor_cores_limit=1",
        "driver_memory_limit=0.25g",
        "executor_memory_limit=6g",
    ]


@pytest.fixture
def sample_submission(sample_parameters):
    """A workflow submission body as sent by callers.

    Returns:
        bytes: JSON encoded submission
    """
    return json.dumps({
        "resourceKind": "WorkflowTemplate",
        "resourceName": "spark-etl",
        "submitOptions": {
            "labels": "team=data",
            "parameters": sample_parameters,
        },
    }).encode()
