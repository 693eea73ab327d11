"""
Command-line interface for Advisor_bot.

Run with: python -m advisor_bot
"""

from datetime import timezone

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from . import __version__
from .config import settings
from .errors import AdvisorBotError, ConfigurationError
from .logging_setup import configure_logging

app = typer.Typer(
    name="advisor-bot",
    help="AI assistant for financial advisors (Gmail, Calendar, HubSpot)",
    add_completion=False,
)
console = Console()


@app.callback()
def _setup(
    log_level: str = typer.Option(None, "--log-level", help="Override LOG_LEVEL"),
):
    configure_logging(log_level or settings.log_level)


def _accounts():
    from .accounts import AccountStore
    return AccountStore(settings.db_path)


def _resolve_user(email: str | None):
    """Find or create the account the command acts for."""
    email = email or settings.default_user_email
    if not email:
        console.print("[red]No user given. Pass --user or set DEFAULT_USER_EMAIL in .env[/red]")
        raise typer.Exit(1)
    try:
        return _accounts().get_or_create_user(email)
    except AdvisorBotError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


def _vector_store():
    from .memory import VectorStore
    return VectorStore(settings.chroma_dir, settings.embedding_dimensions)


def _fail(e: Exception) -> None:
    console.print(f"[red]Error: {e}[/red]")
    raise typer.Exit(1)


UserOption = typer.Option(None, "--user", "-u", help="Advisor's email (default: DEFAULT_USER_EMAIL)")


@app.command()
def chat(
    message: str = typer.Option(
        None,
        "--message", "-m",
        help="Single message to send (non-interactive mode)",
    ),
    user_email: str = UserOption,
    conversation: int = typer.Option(
        None,
        "--conversation", "-c",
        help="Conversation ID to continue (creates new if not specified)",
    ),
    provider: str = typer.Option(
        None,
        "--provider", "-p",
        help="LLM provider override (anthropic, gemini, openai, ollama)",
    ),
):
    """Start a chat session with the assistant."""
    from .agent import check_user_integrations, create_agent

    if provider:
        settings.llm_provider = provider

    user = _resolve_user(user_email)
    try:
        agent = create_agent(_accounts())
    except ConfigurationError as e:
        _fail(e)

    missing = check_user_integrations(user)
    if missing:
        console.print(
            f"[yellow]Not connected: {', '.join(missing)}. "
            "Run connect-google / connect-hubspot for full functionality.[/yellow]"
        )

    def _send(text: str) -> int:
        with console.status("[bold green]Thinking..."):
            turn = agent.process_and_save_message(user, text, conversation)
        for call in turn.tool_calls:
            if call.ok:
                console.print(f"[dim]🔧 {call.name}[/dim] [green]✓[/green]")
            else:
                console.print(f"[dim]🔧 {call.name}[/dim] [red]❌ {call.error}[/red]")
        style = "red" if turn.failed else "blue"
        console.print(Panel(Markdown(turn.response), title="Assistant", border_style=style))
        return turn.conversation_id

    if message:
        _send(message)
        return

    console.print(Panel.fit(
        f"[bold blue]Advisor_bot[/bold blue] v{__version__}\n"
        f"User: [cyan]{user.email}[/cyan]  Provider: [cyan]{settings.llm_provider}[/cyan]\n"
        "[dim]Type 'exit' or 'quit' to leave, 'new' for a new conversation[/dim]",
        title="Welcome",
    ))

    while True:
        try:
            text = Prompt.ask("\n[bold green]You[/bold green]")
        except (KeyboardInterrupt, EOFError):
            console.print("\n[dim]Goodbye![/dim]")
            break

        if text.strip().lower() in ("exit", "quit"):
            console.print("[dim]Goodbye![/dim]")
            break
        if text.strip().lower() == "new":
            conversation = None
            console.print("[dim]Started a new conversation.[/dim]")
            continue
        if not text.strip():
            continue

        conversation = _send(text)


@app.command()
def sync(
    user_email: str = UserOption,
    emails: bool = typer.Option(True, "--emails/--no-emails", help="Sync Gmail messages"),
    contacts: bool = typer.Option(True, "--contacts/--no-contacts", help="Sync HubSpot contacts"),
    days: int = typer.Option(None, "--days", "-d", help="Days of email to fetch (default: SYNC_DAYS_BACK)"),
):
    """Fetch emails and contacts and embed them for search."""
    from .embeddings import create_embedder
    from .rag import RecordIndexer
    from .sync import sync_all

    user = _resolve_user(user_email)
    try:
        indexer = RecordIndexer(_vector_store(), create_embedder())
    except ConfigurationError as e:
        _fail(e)

    with console.status("[bold green]Syncing..."):
        results = sync_all(user, indexer, accounts=_accounts(), emails=emails, contacts=contacts, days_back=days)

    table = Table(title="Sync results")
    table.add_column("Source")
    table.add_column("Fetched", justify="right")
    table.add_column("New", justify="right", style="green")
    table.add_column("Already stored", justify="right")
    table.add_column("Failed", justify="right", style="red")
    for result in results.values():
        table.add_row(result.source, str(result.fetched), str(result.created), str(result.existing), str(result.failed))
    console.print(table)

    for result in results.values():
        for error in result.errors[:5]:
            console.print(f"[yellow]{result.source}: {error}[/yellow]")


@app.command()
def status(user_email: str = UserOption):
    """Show connected accounts and how much data is indexed."""
    from .rag import RAG_DATA_FLOOR
    from .sync import get_sync_status

    user = _resolve_user(user_email)
    try:
        info = get_sync_status(user, _vector_store())
    except AdvisorBotError as e:
        _fail(e)

    def _flag(ok: bool) -> str:
        return "[green]connected[/green]" if ok else "[red]not connected[/red]"

    console.print(Panel.fit(
        f"User: [cyan]{user.email}[/cyan]\n"
        f"Google: {_flag(info['google_connected'])}\n"
        f"HubSpot: {_flag(info['hubspot_connected'])}\n\n"
        f"Emails indexed: {info['emails']} (last added {info['last_email_sync'] or 'never'})\n"
        f"Contacts indexed: {info['contacts']} (last added {info['last_contact_sync'] or 'never'})"
        + ("" if info["total"] >= RAG_DATA_FLOOR else "\n\n[yellow]Little data indexed yet; run sync.[/yellow]"),
        title="Status",
    ))


@app.command()
def search(
    query: str = typer.Argument(..., help="What to look for"),
    user_email: str = UserOption,
    limit: int = typer.Option(5, "--limit", "-n", help="Max results per kind"),
    min_similarity: float = typer.Option(None, "--min-similarity", help="Override RAG_MIN_SIMILARITY"),
):
    """Semantic search over indexed emails and contacts."""
    from .embeddings import create_embedder
    from .rag import ContextRetriever

    user = _resolve_user(user_email)
    try:
        retriever = ContextRetriever(_vector_store(), create_embedder())
        emails = retriever.search_emails(user.id, query, limit=limit, min_similarity=min_similarity)
        contacts = retriever.search_contacts(user.id, query, limit=limit, min_similarity=min_similarity)
    except AdvisorBotError as e:
        _fail(e)

    if not emails and not contacts:
        console.print("[dim]No matches above the similarity threshold.[/dim]")
        return

    if emails:
        table = Table(title="Emails")
        table.add_column("Score", justify="right")
        table.add_column("Subject")
        table.add_column("From")
        table.add_column("Date")
        for hit in emails:
            email = hit.record
            table.add_row(
                f"{hit.similarity:.2f}", email.subject, email.from_email,
                email.date.strftime("%Y-%m-%d") if email.date else "",
            )
        console.print(table)

    if contacts:
        table = Table(title="Contacts")
        table.add_column("Score", justify="right")
        table.add_column("Name")
        table.add_column("Email")
        table.add_column("Notes")
        for hit in contacts:
            contact = hit.record
            table.add_row(f"{hit.similarity:.2f}", contact.name, contact.email, contact.notes[:80])
        console.print(table)


@app.command()
def conversations(
    user_email: str = UserOption,
    archived: bool = typer.Option(False, "--archived", help="Include archived conversations"),
):
    """List conversations, most recent first."""
    from .chat import ChatStore

    user = _resolve_user(user_email)
    items = ChatStore(settings.db_path).list_conversations(user.id, include_archived=archived)

    if not items:
        console.print("[dim]No conversations found.[/dim]")
        return

    console.print("[bold]Conversations:[/bold]\n")
    for conv in items[:20]:
        flag = " [dim](archived)[/dim]" if conv.archived else ""
        console.print(f"  • [cyan]{conv.id}[/cyan] {conv.title}  [dim]{conv.updated_at:%Y-%m-%d %H:%M}[/dim]{flag}")

    if len(items) > 20:
        console.print(f"\n[dim]...and {len(items) - 20} more[/dim]")


@app.command(name="connect-google")
def connect_google(user_email: str = UserOption):
    """One-time Google OAuth (Gmail + Calendar).

    Steps before running this command:
      1. Go to console.cloud.google.com → APIs & Services → Library
      2. Enable "Gmail API" and "Google Calendar API"
      3. Create an OAuth client ID (Desktop app) and download it as credentials.json
      4. Set GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET in .env (needed for token refresh)
      5. Run this command; your browser will open for authorisation
    """
    from google_auth_oauthlib.flow import InstalledAppFlow

    from .accounts import GOOGLE_SCOPES

    user = _resolve_user(user_email)
    creds_file = settings.google_credentials_file
    if not creds_file.exists():
        console.print(f"[red]credentials.json not found at:[/red] {creds_file.resolve()}")
        raise typer.Exit(1)

    console.print("[bold blue]Starting Google OAuth flow...[/bold blue]")
    console.print("[dim]Your browser will open. Grant Gmail and Calendar access.[/dim]\n")

    try:
        flow = InstalledAppFlow.from_client_secrets_file(str(creds_file), GOOGLE_SCOPES)
        creds = flow.run_local_server(port=0)
    except Exception as e:
        console.print(f"[red]OAuth flow failed: {e}[/red]")
        raise typer.Exit(1)

    expires_at = creds.expiry.replace(tzinfo=timezone.utc) if creds.expiry else None
    _accounts().update_tokens(user.id, "google", creds.token, creds.refresh_token, expires_at)
    console.print(f"[green]✓ Google connected for {user.email}[/green]")
    if not (settings.google_client_id and settings.google_client_secret):
        console.print("[yellow]Set GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET so the token can be refreshed.[/yellow]")


@app.command(name="connect-hubspot")
def connect_hubspot(
    user_email: str = UserOption,
    code: str = typer.Option(None, "--code", help="Authorization code (skips the prompt)"),
):
    """Connect a HubSpot account via OAuth."""
    from . import accounts as accounts_module

    user = _resolve_user(user_email)
    try:
        if not code:
            url = accounts_module.hubspot_authorize_url()
            console.print("Open this URL, approve access, then paste the `code` parameter from the redirect:\n")
            console.print(f"[cyan]{url}[/cyan]\n")
            code = Prompt.ask("[bold]Authorization code")
        accounts_module.connect_hubspot(user, code.strip(), _accounts())
    except AdvisorBotError as e:
        _fail(e)

    console.print(f"[green]✓ HubSpot connected for {user.email}[/green]")


@app.command()
def disconnect(
    provider: str = typer.Argument(..., help="google or hubspot"),
    user_email: str = UserOption,
):
    """Forget a provider's tokens."""
    user = _resolve_user(user_email)
    try:
        _accounts().disconnect(user.id, provider.lower())
    except AdvisorBotError as e:
        _fail(e)
    console.print(f"[green]✓ {provider} disconnected[/green]")


@app.command()
def version():
    """Show version information."""
    console.print(f"Advisor_bot v{__version__}")


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
