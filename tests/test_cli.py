"""
Tests for the connector CLI.
"""

import pytest
from typer.testing import CliRunner

from whatsapp_connector.cli import main as cli
from whatsapp_connector.persistence.repo import ConnectorRepository

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_db(monkeypatch, session_factory):
    monkeypatch.setattr(cli, "get_db", lambda: session_factory())


class TestCli:
    """Tests for the administration commands."""

    def test_connect_subaccount(self, session_factory, tenant_id):
        result = runner.invoke(cli.app, ["connect-subaccount", str(tenant_id), "loc_cli", "--name", "CLI Store"])

        assert result.exit_code == 0
        assert "Subaccount created" in result.output
        with session_factory() as db:
            assert ConnectorRepository(db).get_subaccount_by_location("loc_cli").name == "CLI Store"

    def test_connect_invalid_tenant(self):
        result = runner.invoke(cli.app, ["connect-subaccount", "not-a-uuid", "loc_cli"])
        assert result.exit_code == 1

    def test_connect_claimed_location(self, subaccount, other_tenant_id, location_id):
        result = runner.invoke(cli.app, ["connect-subaccount", str(other_tenant_id), location_id])

        assert result.exit_code == 1
        assert "another account" in result.output

    def test_list_subaccounts(self, subaccount, tenant_id, location_id):
        result = runner.invoke(cli.app, ["list-subaccounts", str(tenant_id)])

        assert result.exit_code == 0
        assert "Subaccounts for" in result.output

    def test_session_status(self, subaccount, make_session, location_id):
        session = make_session(subaccount, status="ready")

        result = runner.invoke(cli.app, ["session-status", location_id])

        assert result.exit_code == 0
        assert str(session.id) in result.output
        assert "ready" in result.output

    def test_session_status_unknown_location(self):
        result = runner.invoke(cli.app, ["session-status", "loc_missing"])
        assert result.exit_code == 1

    def test_install_provider(self, session_factory, subaccount, tenant_id, location_id):
        result = runner.invoke(
            cli.app,
            ["install-provider", str(tenant_id), location_id, "cp_cli", "--access-token", "tok"],
        )

        assert result.exit_code == 0
        with session_factory() as db:
            assert ConnectorRepository(db).get_installation(subaccount.id).conversation_provider_id == "cp_cli"

    def test_send_test_rejects_bad_number(self):
        result = runner.invoke(cli.app, ["send-test", "00000000-0000-0000-0000-000000000000", "nope", "--token", "t"])
        assert result.exit_code == 1
