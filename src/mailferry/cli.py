"""Command line entry point: ``mailferry add``."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, List, Optional, Tuple

import typer
from rich.console import Console
from rich.logging import RichHandler

from .credentials import PromptCredentialProvider
from .errors import ConfigurationError, MailferryError, format_error_for_cli
from .models import RunPolicy
from .orchestrator import IngestionOrchestrator, LocalWritePath, RemoteWritePath, WritePath
from .remote import RemoteSubmissionClient, RetryStrategy
from .resume_state import ResumeStateStore, default_state_path
from .settings import IngestSettings, load_settings
from .sources import (
    GmailSource,
    ImapSource,
    MaildirSource,
    MboxSource,
    MessageSource,
    SingleMessageSource,
)
from .storage import LocalStorage


console = Console()
error_console = Console(stderr=True)

app = typer.Typer(help="Stream mail from mbox, maildir, IMAP or Gmail into a mail index")


@app.callback()
def main() -> None:
    """mailferry command line tools."""


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=error_console, show_path=False)],
        force=True,
    )


def _report(line: str) -> None:
    console.print(line, markup=False, highlight=False, emoji=False, soft_wrap=True)


def _fail(exc: MailferryError) -> None:
    error_console.print(
        format_error_for_cli(exc),
        style="red",
        markup=False,
        highlight=False,
        emoji=False,
        soft_wrap=True,
    )
    raise typer.Exit(1)


def build_source(
    settings: IngestSettings,
    *,
    mbox: Optional[Path],
    mbox_start_offset: int,
    maildir: Optional[List[Path]],
    imap_host: Optional[str],
    imap_port: int,
    use_ssl: bool,
    imap_username: Optional[str],
    imap_password: Optional[str],
    imap_folder: str,
    gmail_username: Optional[str],
    gmail_password: Optional[str],
    state_file: Optional[Path],
) -> MessageSource:
    """Pick the one source the options ask for; stdin when none is given."""

    chosen = [
        name
        for name, value in (
            ("--mbox", mbox),
            ("--maildir", maildir),
            ("--imap-host", imap_host),
            ("--gmail-username", gmail_username),
        )
        if value
    ]
    if len(chosen) > 1:
        raise ConfigurationError(
            f"Options {', '.join(chosen)} are mutually exclusive; choose one source"
        )

    if mbox:
        return MboxSource(mbox, start_offset=mbox_start_offset)
    if maildir:
        return MaildirSource(maildir)
    if imap_host:
        name = f"{imap_username}@{imap_host}" if imap_username else imap_host
        state_path = state_file or default_state_path(
            settings.state_dir, "imap", f"{name}/{imap_folder}"
        )
        return ImapSource(
            imap_host,
            port=imap_port,
            folder=imap_folder,
            username=imap_username,
            use_ssl=use_ssl,
            credential_provider=PromptCredentialProvider(
                username=imap_username, password=imap_password
            ),
            state_store=ResumeStateStore(state_path),
            page_size=settings.imap_page_size,
        )
    if gmail_username:
        state_path = state_file or default_state_path(settings.state_dir, "gmail", gmail_username)
        return GmailSource(
            gmail_username,
            credential_provider=PromptCredentialProvider(
                username=gmail_username, password=gmail_password
            ),
            state_store=ResumeStateStore(state_path),
            page_size=settings.imap_page_size,
        )
    return SingleMessageSource()


def build_write_path(settings: IngestSettings) -> Tuple[WritePath, Callable[[], None]]:
    """Return the configured write path and its cleanup callable."""

    if settings.store_dir is not None:
        storage = LocalStorage(settings.store_dir)
        return LocalWritePath(storage), storage.close
    remote = settings.remote
    client = RemoteSubmissionClient(
        host=remote.host,
        port=remote.port,
        timeout=remote.timeout_seconds,
        retry_strategy=RetryStrategy(max_retries=remote.max_retries),
    )
    return RemoteWritePath(client), client.close


@app.command("add")
def add(
    store_dir: Optional[Path] = typer.Option(
        None, "--dir", "-d", help="Write directly to this storage directory instead of a server"
    ),
    host: Optional[str] = typer.Option(None, "--host", "-H", help="Indexing server host [localhost]"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Indexing server port [8042]"),
    num_messages: Optional[int] = typer.Option(
        None, "--num-messages", "-n", min=0, help="Scan at most this many messages"
    ),
    num_skip: int = typer.Option(
        0, "--num-skip", "-k", min=0, help="Skip this many messages before processing"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Print one line per message"),
    state_file: Optional[Path] = typer.Option(
        None, "--state-file", help="Resume state file for IMAP/Gmail sources"
    ),
    add_labels: Optional[str] = typer.Option(
        None, "--add-labels", help="Comma-separated labels added to every message"
    ),
    remove_labels: Optional[str] = typer.Option(
        None, "--remove-labels", help="Comma-separated labels never applied"
    ),
    no_skip_spam: bool = typer.Option(False, "--no-skip-spam", help="Add messages labelled spam"),
    no_skip_deleted: bool = typer.Option(
        False, "--no-skip-deleted", help="Add messages flagged deleted"
    ),
    mbox: Optional[Path] = typer.Option(None, "--mbox", help="Read messages from this mbox file"),
    mbox_start_offset: int = typer.Option(
        0, "--mbox-start-offset", min=0, help="Byte offset to start scanning the mbox at"
    ),
    maildir: Optional[List[Path]] = typer.Option(
        None, "--maildir", help="Read messages from this maildir (repeatable)"
    ),
    imap_host: Optional[str] = typer.Option(None, "--imap-host", help="Read from this IMAP server"),
    imap_port: int = typer.Option(993, "--imap-port", help="IMAP port"),
    no_ssl: bool = typer.Option(False, "--no-ssl", help="Connect to IMAP without TLS"),
    imap_username: Optional[str] = typer.Option(None, "--imap-username", help="IMAP username"),
    imap_password: Optional[str] = typer.Option(
        None, "--imap-password", help="IMAP password (prompted when omitted)"
    ),
    imap_folder: str = typer.Option("INBOX", "--imap-folder", help="IMAP folder to read"),
    gmail_username: Optional[str] = typer.Option(
        None, "--gmail-username", help="Read All Mail of this Gmail account"
    ),
    gmail_password: Optional[str] = typer.Option(
        None, "--gmail-password", help="Gmail app password (prompted when omitted)"
    ),
    retries: Optional[int] = typer.Option(
        None, "--retries", min=0, help="Retry failed submissions this many times"
    ),
    config: Optional[Path] = typer.Option(None, "--config", help="Settings JSON file"),
) -> None:
    """Add messages from one source to the index.

    Examples:
        mailferry add --mbox ~/mail/archive.mbox --dir ~/mailstore
        mailferry add --gmail-username me@gmail.com --num-messages 1000
        mailferry add < message.eml
    """
    _configure_logging(verbose)
    try:
        settings = load_settings(
            config,
            overrides={
                "store_dir": store_dir,
                "remote": {"host": host, "port": port, "max_retries": retries},
            },
        )
        policy = RunPolicy(
            num_messages=num_messages,
            num_skip=num_skip,
            verbose=verbose,
            add_labels=add_labels,
            remove_labels=remove_labels,
            skip_spam=not no_skip_spam,
            skip_deleted=not no_skip_deleted,
        )
        source = build_source(
            settings,
            mbox=mbox,
            mbox_start_offset=mbox_start_offset,
            maildir=maildir,
            imap_host=imap_host,
            imap_port=imap_port,
            use_ssl=not no_ssl,
            imap_username=imap_username,
            imap_password=imap_password,
            imap_folder=imap_folder,
            gmail_username=gmail_username,
            gmail_password=gmail_password,
            state_file=state_file,
        )
        write_path, cleanup = build_write_path(settings)
    except MailferryError as exc:
        _fail(exc)
        return

    orchestrator = IngestionOrchestrator(
        write_path,
        policy=policy,
        bad_message_path=settings.bad_message_path,
        report_interval=settings.report_interval_seconds,
        reporter=_report,
    )
    try:
        orchestrator.run(source)
    except MailferryError as exc:
        _fail(exc)
    except KeyboardInterrupt:
        if source.resumable:
            error_console.print("Interrupted; resume state saved.")
        else:
            error_console.print("Interrupted.")
        raise typer.Exit(130)
    finally:
        cleanup()


@app.command("state")
def show_state(
    state_file: Path = typer.Argument(..., help="Resume state file to inspect"),
    clear: bool = typer.Option(False, "--clear", help="Delete the state so the next run starts over"),
) -> None:
    """Show or clear a resume state file."""
    store = ResumeStateStore(state_file)
    if not store.path.exists():
        console.print(f"No resume state at {store.path}", markup=False)
        return
    if clear:
        store.clear()
        console.print(f"Cleared {store.path}", markup=False)
        return
    console.print(store.path.read_text(encoding="utf-8"), markup=False, highlight=False)


if __name__ == "__main__":
    app()
