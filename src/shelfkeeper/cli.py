import asyncio
import logging
import sys
from typing import List, Optional

from dotenv import set_key
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.prompt import Confirm, IntPrompt, Prompt
from rich.table import Table

from .auth import AuthClient
from .config import ENV_FILE, Settings, load_settings
from .errors import AuthError, ConfigError, ShelfkeeperError
from .exporter import Exporter
from .library import LibraryClient
from .models import SHELVES, LibraryEntry
from .store import Store

console = Console()
logger = logging.getLogger(__name__)

COMMANDS = ["list", "add", "edit", "move", "delete", "tags", "export", "logout", "quit"]


def print_header():
    console.print(Panel.fit(
        """[bold magenta]shelfkeeper[/bold magenta]
[italic]Your reading life, one shelf at a time[/italic]""",
        border_style="magenta"
    ))


def setup_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def show_alert(message: str):
    console.print(f"[bold red]{message}[/bold red]")


def load_or_prompt_settings() -> Settings:
    try:
        return load_settings()
    except ConfigError:
        console.print(f"[yellow]Enter your backend details (saved once to {ENV_FILE}):[/yellow]")
        url = Prompt.ask("Project URL")
        key = Prompt.ask("Anon key")
        ENV_FILE.touch(exist_ok=True)
        set_key(str(ENV_FILE), "SUPABASE_URL", url)
        set_key(str(ENV_FILE), "SUPABASE_ANON_KEY", key)
        console.print(f"[dim]Saved to {ENV_FILE}[/dim]")
        return load_settings()


async def login(auth: AuthClient, settings: Settings, use_saved: bool = True):
    if use_saved:
        try:
            if await auth.get_session():
                return
        except AuthError as e:
            logger.info("Saved session could not be restored: %s", e)

    email = settings.email if use_saved else None
    password = settings.password if use_saved else None
    if not email or not password:
        console.print("[yellow]Sign in to your library:[/yellow]")
        email = Prompt.ask("Email", default=email) if email else Prompt.ask("Email")
        password = Prompt.ask("Password", password=True)
        if Confirm.ask(f"Save these credentials to {ENV_FILE}?", default=False):
            ENV_FILE.touch(exist_ok=True)
            set_key(str(ENV_FILE), "SHELFKEEPER_EMAIL", email)
            set_key(str(ENV_FILE), "SHELFKEEPER_PASSWORD", password)

    console.print("\n[dim]Signing in...[/dim]")
    try:
        session = await auth.sign_in_with_password(email, password)
    except AuthError as e:
        raise AuthError(f"Sign-in failed: {e}", status_code=e.status_code) from e
    console.print(f"[dim]Signed in as [bold]{session.user.email or session.user.id}[/bold][/dim]")


def render_books(books: List[LibraryEntry]):
    if not books:
        console.print("[dim]No books yet. Use [bold]add[/bold] to start your library.[/dim]")
        return

    table = Table(show_lines=False)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Title", style="bold")
    table.add_column("Author")
    table.add_column("Shelf", style="cyan")
    table.add_column("Rating", justify="right")
    table.add_column("Spice", justify="right")
    table.add_column("Form")
    table.add_column("Tags", style="magenta")
    for i, b in enumerate(books, 1):
        table.add_row(
            str(i),
            b.title or "?",
            b.author or "?",
            b.shelf or "",
            "" if b.rating is None else str(b.rating),
            "" if b.spice_rating is None else str(b.spice_rating),
            b.form or "",
            ", ".join(b.tags),
        )
    console.print(table)


def choose_book(books: List[LibraryEntry]) -> Optional[LibraryEntry]:
    if not books:
        console.print("[dim]Nothing to choose from.[/dim]")
        return None
    render_books(books)
    index = IntPrompt.ask("Book #", default=1)
    if not 1 <= index <= len(books):
        show_alert(f"No book #{index}")
        return None
    return books[index - 1]


def parse_tags(raw: str) -> List[str]:
    seen = []
    for name in raw.split(","):
        name = name.strip()
        if name and name not in seen:
            seen.append(name)
    return seen


def prompt_book(current: Optional[LibraryEntry] = None) -> dict:
    def _text(value) -> Optional[str]:
        return None if value is None else str(value)

    details = {}
    if current is None:
        details["title"] = Prompt.ask("Title")
        details["author"] = Prompt.ask("Author")
        details["pages"] = Prompt.ask("Pages", default="") or None
    details["shelf"] = Prompt.ask(
        "Shelf", choices=list(SHELVES),
        default=current.shelf if current and current.shelf in SHELVES else "to-read",
    )
    details["rating"] = Prompt.ask("Rating (0-5)", default=_text(current.rating) if current else "") or None
    details["spice_rating"] = Prompt.ask(
        "Spice rating (0-5)", default=_text(current.spice_rating) if current else ""
    ) or None
    details["form"] = Prompt.ask("Form", default=(current.form if current else None) or "ebook")
    details["note"] = Prompt.ask("Note", default=(current.note if current else None) or "")
    details["tags"] = parse_tags(
        Prompt.ask("Tags (comma separated)", default=", ".join(current.tags) if current else "")
    )
    return details


def report(ok: bool, library: LibraryClient, done: str):
    if ok:
        console.print(f"[green]{done}[/green]")
        if library.tag_failures:
            console.print(f"[yellow]Some tags were not linked: {', '.join(library.tag_failures)}[/yellow]")
    else:
        console.print("[red]Nothing changed.[/red] [dim](see log for details)[/dim]")


async def menu_loop(library: LibraryClient, auth: AuthClient, settings: Settings):
    while True:
        command = Prompt.ask("\n[bold]shelfkeeper[/bold]", choices=COMMANDS, default="list")

        if command == "list":
            render_books(library.books)

        elif command == "add":
            ok = await library.add_book(prompt_book())
            report(ok, library, "Book added.")

        elif command == "edit":
            entry = choose_book(library.books)
            if entry:
                details = prompt_book(entry)
                details["id"] = entry.id
                ok = await library.update_book(details)
                report(ok, library, "Book updated.")

        elif command == "move":
            entry = choose_book(library.books)
            if entry:
                shelf = Prompt.ask("Move to", choices=list(SHELVES))
                ok = await library.move_to_shelf(entry.id, shelf)
                report(ok, library, f"Moved to {shelf}.")

        elif command == "delete":
            entry = choose_book(library.books)
            if entry:
                ok = await library.delete_book(entry.id)
                report(ok, library, "Book removed from your library.")

        elif command == "tags":
            if library.tags:
                console.print(", ".join(f"[magenta]{t}[/magenta]" for t in library.tags))
            else:
                console.print("[dim]No tags yet.[/dim]")

        elif command == "export":
            exporter = Exporter(settings.output_dir)
            json_path = exporter.to_json(library.books)
            csv_path = exporter.to_csv(library.books)
            console.print(f"• JSON: [blue]{json_path}[/blue]")
            console.print(f"• CSV: [blue]{csv_path}[/blue]")

        elif command == "logout":
            await auth.sign_out()
            console.print("[dim]Signed out.[/dim]")
            if not Confirm.ask("Sign in again?", default=False):
                return
            await login(auth, settings, use_saved=False)

        elif command == "quit":
            return


async def run_shell():
    settings = load_or_prompt_settings()
    setup_logging(settings.log_level)

    auth = AuthClient(settings.supabase_url, settings.supabase_anon_key, session_file=settings.session_file)
    store = Store(settings.supabase_url, settings.supabase_anon_key)
    try:
        await login(auth, settings)
        auth.bind_store(store)
        async with LibraryClient(auth, store, confirm=Confirm.ask, alert=show_alert) as library:
            console.print(f"[dim]{len(library.books)} books, {len(library.tags)} tags[/dim]")
            await menu_loop(library, auth, settings)
    finally:
        await store.aclose()
        await auth.aclose()


def main():
    print_header()
    try:
        asyncio.run(run_shell())
    except KeyboardInterrupt:
        console.print("\n[dim]Bye.[/dim]")
    except ShelfkeeperError as e:
        cause = e.__cause__ or e
        console.print(f"[bold red]Error:[/bold red] {e}")
        if cause is not e:
            console.print(f"[red]Caused by:[/red] {cause}")
        sys.exit(1)


if __name__ == "__main__":
    main()
