"""Tests for the command line entry point."""

import logging

import pytest

from accessgraph import __main__ as cli


FIXTURE = """
flags:
  - name: mobile_app
    enabled: true
tenants:
  acme:
    roles:
      - id: agent
        permissions: [leads:read]
      - id: manager
        parents: [agent]
        permissions: [leads:write]
    assignments:
      alice: [manager]
"""


@pytest.fixture
def fixture_path(tmp_path):
    path = tmp_path / "fixture.yaml"
    path.write_text(FIXTURE)
    return str(path)


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, settings):
    monkeypatch.setattr(cli, "get_settings", lambda: settings)
    yield
    logger = logging.getLogger("accessgraph")
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)


class TestMain:

    def test_usage(self, capsys):
        assert cli.main(["only-a-path"]) == 2
        assert "Usage" in capsys.readouterr().err

    def test_summary(self, fixture_path, capsys):
        assert cli.main([fixture_path, "acme", "alice"]) == 0
        out = capsys.readouterr().out
        assert "Roles: manager" in out
        assert "Permissions: leads:read, leads:write" in out
        assert "Flags: mobile_app" in out

    def test_all_granted(self, fixture_path, capsys):
        assert cli.main([fixture_path, "acme", "alice", "leads:read", "leads:write"]) == 0
        assert "leads:write: ALLOW" in capsys.readouterr().out

    def test_any_denied(self, fixture_path, capsys):
        assert cli.main([fixture_path, "acme", "alice", "leads:read", "leads:delete"]) == 1
        assert "leads:delete: DENY" in capsys.readouterr().out

    def test_configures_package_logger(self, fixture_path):
        cli.main([fixture_path, "acme", "alice"])
        assert logging.getLogger("accessgraph").handlers

    def test_missing_fixture(self, tmp_path, capsys):
        assert cli.main([str(tmp_path / "absent.yaml"), "acme", "alice"]) == 2
        assert "cannot load fixture" in capsys.readouterr().err
