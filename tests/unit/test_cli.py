import asyncio

from typer.testing import CliRunner

import apiflow.storage as storage_module
from apiflow.cli import app
from apiflow.storage import InMemoryStorage

runner = CliRunner()


def _setup_storage(monkeypatch, tmp_path) -> InMemoryStorage:
    monkeypatch.setenv("APIFLOW_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.delenv("APIFLOW_STORAGE_URL", raising=False)
    storage = InMemoryStorage()
    storage_module._storage_instance = storage
    return storage


def test_flow_list_seeds_default_flow(monkeypatch, tmp_path):
    _setup_storage(monkeypatch, tmp_path)

    result = runner.invoke(app, ["flow", "list"])
    assert result.exit_code == 0, result.stdout
    assert "Default Flow" in result.stdout
    assert result.stdout.startswith("*")


def test_flow_create_show_and_delete(monkeypatch, tmp_path):
    storage = _setup_storage(monkeypatch, tmp_path)

    result = runner.invoke(app, ["flow", "create", "Checkout", "--description", "Buy things"])
    assert result.exit_code == 0, result.stdout
    assert "Created flow" in result.stdout

    flows = asyncio.run(storage.get("api_admin_flows"))
    created = next(f for f in flows if f["name"] == "Checkout")

    result = runner.invoke(app, ["flow", "show", created["id"]])
    assert result.exit_code == 0, result.stdout
    assert "Checkout" in result.stdout
    assert "Buy things" in result.stdout

    result = runner.invoke(app, ["flow", "delete", created["id"]])
    assert result.exit_code == 0
    result = runner.invoke(app, ["flow", "show", created["id"]])
    assert result.exit_code == 1
    assert "Flow not found" in result.stdout


def test_flow_generate_from_catalog(monkeypatch, tmp_path):
    _setup_storage(monkeypatch, tmp_path)
    catalog = tmp_path / "catalog.yaml"
    catalog.write_text(
        """
endpoints:
  - id: list-users
    method: GET
    path: /api/v1/users
    category: Users
  - id: create-user
    method: POST
    path: /api/v1/users
    name: Create user
    category: Users
  - id: health
    path: /api/v1/health
"""
    )

    result = runner.invoke(app, ["flow", "generate", str(catalog)])
    assert result.exit_code == 0, result.stdout
    assert "Users (2 steps)" in result.stdout
    assert "General (1 steps)" in result.stdout

    missing = runner.invoke(app, ["flow", "generate", str(tmp_path / "nope.yaml")])
    assert missing.exit_code == 1


def test_flow_run_with_skipped_steps(monkeypatch, tmp_path):
    storage = _setup_storage(monkeypatch, tmp_path)
    asyncio.run(
        storage.set(
            "api_admin_flows",
            [
                {
                    "id": "f_skip",
                    "name": "Skipped",
                    "steps": [
                        {"id": "s1", "name": "Never", "url": "/never", "skipIf": "true"}
                    ],
                }
            ],
        )
    )

    result = runner.invoke(app, ["flow", "run", "f_skip"])
    assert result.exit_code == 0, result.stdout
    assert "[0] skipped" in result.stdout
    assert "Run completed: 0 executed, 1 skipped" in result.stdout

    missing = runner.invoke(app, ["flow", "run", "f_missing"])
    assert missing.exit_code == 1
    assert "Flow not found" in missing.stdout


def test_variable_commands(monkeypatch, tmp_path):
    storage = _setup_storage(monkeypatch, tmp_path)

    assert runner.invoke(app, ["var", "set", "count", "3"]).exit_code == 0
    assert runner.invoke(app, ["var", "set", "token", "abc"]).exit_code == 0
    assert asyncio.run(storage.get("api_tester_variables")) == {"count": 3, "token": "abc"}

    result = runner.invoke(app, ["var", "list"])
    assert "count\t3" in result.stdout
    assert 'token\t"abc"' in result.stdout

    assert runner.invoke(app, ["var", "unset", "count"]).exit_code == 0
    assert runner.invoke(app, ["var", "unset", "count"]).exit_code == 1

    assert runner.invoke(app, ["var", "clear"]).exit_code == 0
    assert "No variables set" in runner.invoke(app, ["var", "list"]).stdout


def test_history_and_state_when_empty(monkeypatch, tmp_path):
    _setup_storage(monkeypatch, tmp_path)

    result = runner.invoke(app, ["history", "list"])
    assert result.exit_code == 0
    assert "No history entries" in result.stdout

    result = runner.invoke(app, ["state", "show"])
    assert result.exit_code == 0
    assert result.stdout.strip() == "{}"

    result = runner.invoke(app, ["state", "show", "--fetch"])
    assert result.exit_code == 1
    assert "Failed to read state" in result.stdout
