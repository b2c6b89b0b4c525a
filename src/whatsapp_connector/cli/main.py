"""
Connector CLI

Command-line interface for connector administration.

Commands:
- connect-subaccount: Bind a CRM location to a tenant
- list-subaccounts: List a tenant's subaccounts
- list-sessions: List a tenant's sessions
- session-status: Show the current session of a location
- install-provider: Store CRM conversation-provider credentials
- send-test: Send a test message through a running API
"""

from typing import Optional
from uuid import UUID

import httpx
import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from connector_core.logging import setup_logging
from whatsapp_connector.errors import ConnectorError

app = typer.Typer(
    name="connector-cli",
    help="WhatsApp Connector CLI",
)

console = Console()


@app.callback()
def main(log_level: str = typer.Option("WARNING", help="Log level for CLI output")):
    setup_logging(log_level, service="connector-cli")


def get_db():
    """Get database session."""
    from connector_core.db import get_db as _get_db
    return next(_get_db())


def parse_tenant(tenant_id: str) -> UUID:
    try:
        return UUID(tenant_id)
    except ValueError:
        rprint(f"[red]Invalid tenant ID: {tenant_id}[/red]")
        raise typer.Exit(1)


@app.command()
def connect_subaccount(
    tenant_id: str = typer.Argument(..., help="Tenant UUID"),
    location_id: str = typer.Argument(..., help="CRM location ID"),
    name: Optional[str] = typer.Option(None, help="Display name (defaults to 'Location <id>')"),
):
    """Bind a CRM location to a tenant."""
    tenant_uuid = parse_tenant(tenant_id)
    db = get_db()

    try:
        from whatsapp_connector.service.subaccounts import SubaccountService

        subaccount, created = SubaccountService(db).connect(tenant_uuid, location_id, name)
        rprint(f"[green]Subaccount {'created' if created else 'updated'}:[/green]")
        rprint(f"  ID: {subaccount.id}")
        rprint(f"  Location: {subaccount.location_id}")
        rprint(f"  Name: {subaccount.name}")

    except ConnectorError as e:
        rprint(f"[red]{e.message}[/red]")
        raise typer.Exit(1)

    finally:
        db.close()


@app.command()
def list_subaccounts(
    tenant_id: str = typer.Argument(..., help="Tenant UUID"),
):
    """List a tenant's subaccounts."""
    tenant_uuid = parse_tenant(tenant_id)
    db = get_db()

    try:
        from whatsapp_connector.service.subaccounts import SubaccountService

        subaccounts = SubaccountService(db).list_for_tenant(tenant_uuid)
        if not subaccounts:
            rprint("[yellow]No subaccounts found[/yellow]")
            return

        table = Table(title=f"Subaccounts for {tenant_uuid}")
        table.add_column("Location", style="cyan")
        table.add_column("Name")
        table.add_column("ID", style="dim")
        table.add_column("Created")

        for subaccount in subaccounts:
            table.add_row(
                subaccount.location_id,
                subaccount.name or "",
                str(subaccount.id),
                subaccount.created_at.strftime("%Y-%m-%d %H:%M"),
            )

        console.print(table)

    finally:
        db.close()


@app.command()
def list_sessions(
    tenant_id: str = typer.Argument(..., help="Tenant UUID"),
):
    """List a tenant's sessions, newest first."""
    tenant_uuid = parse_tenant(tenant_id)
    db = get_db()

    try:
        from whatsapp_connector.persistence.repo import ConnectorRepository

        rows = ConnectorRepository(db).list_sessions_for_tenant(tenant_uuid)
        if not rows:
            rprint("[yellow]No sessions found[/yellow]")
            return

        table = Table(title=f"Sessions for {tenant_uuid}")
        table.add_column("Session", style="dim")
        table.add_column("Location", style="cyan")
        table.add_column("Status")
        table.add_column("Phone")
        table.add_column("Updated")

        status_colors = {"ready": "green", "qr": "yellow", "initializing": "blue"}
        for session, subaccount in rows:
            color = status_colors.get(session.status, "red")
            table.add_row(
                str(session.id),
                subaccount.location_id,
                f"[{color}]{session.status}[/{color}]",
                session.phone_number or "-",
                session.updated_at.strftime("%Y-%m-%d %H:%M"),
            )

        console.print(table)

    finally:
        db.close()


@app.command()
def session_status(
    location_id: str = typer.Argument(..., help="CRM location ID"),
):
    """Show the current session of a location."""
    db = get_db()

    try:
        from whatsapp_connector.persistence.repo import ConnectorRepository
        from whatsapp_connector.phone import format_for_display

        repo = ConnectorRepository(db)
        subaccount = repo.get_subaccount_by_location(location_id)
        if not subaccount:
            rprint(f"[red]Location not found: {location_id}[/red]")
            raise typer.Exit(1)

        session = repo.get_current_session(subaccount.id)
        if not session:
            rprint(f"[yellow]No session for {location_id}[/yellow]")
            return

        rprint(f"[bold]Session {session.id}[/bold]")
        rprint(f"  Location: {location_id} ({subaccount.name})")
        rprint(f"  Status: {session.status}")
        if session.phone_number:
            rprint(f"  Phone: {format_for_display(session.phone_number)}")
        rprint(f"  Pairing code: {'present' if session.pairing_code else 'none'}")
        rprint(f"  Updated: {session.updated_at.isoformat()}")

        mapping = repo.get_location_map(location_id)
        if mapping:
            rprint(f"  CRM outbound via session: {mapping.session_id}")

    finally:
        db.close()


@app.command()
def install_provider(
    tenant_id: str = typer.Argument(..., help="Tenant UUID"),
    location_id: str = typer.Argument(..., help="CRM location ID"),
    conversation_provider_id: str = typer.Argument(..., help="CRM conversation provider ID"),
    access_token: str = typer.Option(..., prompt=True, hide_input=True, help="CRM access token (will be encrypted)"),
    refresh_token: Optional[str] = typer.Option(None, help="CRM refresh token (will be encrypted)"),
):
    """Store CRM conversation-provider credentials for a location."""
    tenant_uuid = parse_tenant(tenant_id)
    db = get_db()

    try:
        from connector_core.settings import get_settings
        from whatsapp_connector.service.subaccounts import SubaccountService

        if not get_settings().ENCRYPTION_KEY:
            rprint("[yellow]Warning: ENCRYPTION_KEY not set, storing tokens unencrypted[/yellow]")

        installation = SubaccountService(db).install_provider(
            tenant_uuid, location_id, conversation_provider_id, access_token, refresh_token
        )
        rprint("[green]Provider installation saved[/green]")
        rprint(f"  ID: {installation.id}")
        rprint(f"  Conversation provider: {installation.conversation_provider_id}")

    except ConnectorError as e:
        rprint(f"[red]{e.message}[/red]")
        raise typer.Exit(1)

    finally:
        db.close()


@app.command()
def send_test(
    session_id: str = typer.Argument(..., help="Session UUID"),
    to: str = typer.Argument(..., help="Recipient phone number"),
    message: str = typer.Option("Test message from the WhatsApp connector", help="Message text"),
    api_url: str = typer.Option("http://localhost:8000", envvar="CONNECTOR_API_URL", help="Connector API base URL"),
    token: str = typer.Option(..., envvar="CONNECTOR_TOKEN", help="Bearer token of the session owner"),
):
    """
    Send a test message through a running API.

    Live clients only exist inside the API process, so the message goes
    through POST /messages/send.
    """
    from whatsapp_connector.phone import normalize

    try:
        recipient = normalize(to)
    except ConnectorError as e:
        rprint(f"[red]{e.message}[/red]")
        raise typer.Exit(1)

    try:
        response = httpx.post(
            f"{api_url.rstrip('/')}/messages/send",
            json={"sessionId": session_id, "to": recipient, "message": message},
            headers={"Authorization": f"Bearer {token}"},
            timeout=30.0,
        )
    except httpx.RequestError as e:
        rprint(f"[red]Request failed: {e}[/red]")
        raise typer.Exit(1)

    data = response.json()
    if response.status_code >= 400:
        rprint(f"[red]Send failed ({response.status_code}): {data.get('message') or data}[/red]")
        raise typer.Exit(1)

    rprint("[green]Message sent![/green]")
    rprint(f"  Recipient: {data.get('recipient')}")
    rprint(f"  Message ID: {data.get('messageId')}")


if __name__ == "__main__":
    app()
