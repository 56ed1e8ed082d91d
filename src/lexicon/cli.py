"""CLI for the lexicon scanner store and sweeps."""

import logging
import signal
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from lexicon import __version__
from lexicon.bootstrap import BootstrapError, BootstrapResult, Bootstrapper
from lexicon.config import LexiconConfig, load_config
from lexicon.logging import SweepLogger, analyze_logs

app = typer.Typer(
    name="lexicon",
    help="Hebrew lexicon store: bootstrap, review and extraction sweeps, batch files.",
    no_args_is_help=True,
)
console = Console()


# =============================================================================
# CLI Helpers
# =============================================================================

def _cli_error(message: str, detail: str | None = None) -> None:
    """Print formatted error message to console."""
    if detail:
        console.print(f"[red]Error:[/red] {message}: {detail}")
    else:
        console.print(f"[red]Error:[/red] {message}")


def _safe_write_bytes(path: Path, data: bytes, description: str = "file") -> bool:
    """Write bytes atomically. Returns True on success."""
    temp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_path.write_bytes(data)
        temp_path.replace(path)
        return True
    except OSError as e:
        _cli_error(f"Failed to write {description}", str(e))
        if temp_path.exists():
            temp_path.unlink(missing_ok=True)
        return False


def _bootstrap(config: LexiconConfig, force_fresh: bool = False) -> BootstrapResult:
    """Load the active store, reporting anything the operator should know."""
    try:
        result = Bootstrapper(config).load(force_fresh=force_fresh)
    except BootstrapError as e:
        _cli_error("Could not open the lexicon store", str(e))
        raise typer.Exit(1)

    console.print(f"[dim]Store loaded from {result.source}"
                  f"{' (service online)' if result.server_available else ''}[/dim]")
    if result.discarded_cache:
        console.print("[yellow]Local cache was corrupted and has been discarded.[/yellow]")
    if result.migrated_columns:
        console.print(f"[dim]Added columns: {', '.join(result.migrated_columns)}[/dim]")
    if result.superseded:
        console.print(
            "[yellow]Service snapshot replaced a different local cache; "
            f"the old cache was kept under {config.cache_dir / 'superseded'}[/yellow]"
        )
    if result.pending_download is not None:
        target = config.cache_dir / "lexicon-fresh.sqlite"
        if _safe_write_bytes(target, result.pending_download, "fresh store image"):
            console.print(f"[yellow]Service unreachable. Fresh store image saved to {target}; "
                          "place it where the service expects it.[/yellow]")
    return result


def _make_judge(config: LexiconConfig):
    from lexicon.nlp.judge import ClaudeJudge

    return ClaudeJudge(config.judge)


def _strongs_index(config: LexiconConfig):
    from lexicon.store.strongs import StrongsIndex

    return StrongsIndex(config.strongs_locations)


def _print_sweep_result(result) -> None:
    color = {"completed": "green", "cancelled": "yellow", "budget_exhausted": "yellow"}.get(result.outcome, "red")
    console.print(f"[{color}]Sweep {result.outcome}[/{color}]")
    console.print(f"  [dim]Pages:[/dim] {result.pages_processed}/{result.pages_total}")
    console.print(f"  [dim]Entries submitted:[/dim] {result.entries_submitted}")
    console.print(f"  [dim]Entries updated:[/dim] {result.entries_updated}")
    console.print(f"  [dim]Requests:[/dim] {result.requests_used} (session total {result.requests_used_total})")
    console.print(f"  [dim]Pages with invalid entries:[/dim] {result.invalid_pages}")
    if result.skipped_pages:
        console.print(f"  [dim]Skipped (no image):[/dim] {', '.join(result.skipped_pages)}")
    if result.failed_pages:
        console.print(f"  [red]Extraction failed:[/red] {', '.join(result.failed_pages)}")
    if result.error:
        console.print(f"  [red]{result.error}[/red]")


def _run_sweep(config: LexiconConfig, max_requests: int | None, run, strongs=None) -> None:
    """Run a sweep with a progress bar; Ctrl-C stops after the request in flight."""
    from lexicon.sweep.orchestrator import SweepFailed, SweepOrchestrator

    result = _bootstrap(config)
    previous = signal.getsignal(signal.SIGINT)
    try:
        with _make_judge(config) as judge:
            orchestrator = SweepOrchestrator(result.store, judge, config, strongs=strongs)
            if max_requests is not None:
                orchestrator.max_requests = max_requests

            def _interrupt(signum, frame):
                console.print("[yellow]Stopping after the current request...[/yellow]")
                orchestrator.stop("interrupted")

            signal.signal(signal.SIGINT, _interrupt)
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TimeElapsedColumn(),
                console=console,
            ) as progress:
                task = progress.add_task("Starting sweep...", total=None)

                def on_progress(state):
                    progress.update(
                        task,
                        total=state.total_pages,
                        completed=state.processed_pages,
                        description=f"{state.current_page or ''} ({state.requests_used} requests)",
                    )

                sweep_result = run(orchestrator, on_progress)
    except SweepFailed as e:
        _print_sweep_result(e.result)
        raise typer.Exit(1)
    finally:
        signal.signal(signal.SIGINT, previous)
        result.store.close()

    _print_sweep_result(sweep_result)
    if orchestrator.budget_remaining is not None:
        console.print(f"  [dim]Budget remaining:[/dim] {orchestrator.budget_remaining} requests")


# =============================================================================
# Commands
# =============================================================================


@app.command()
def status():
    """Show store statistics."""
    config = load_config()
    result = _bootstrap(config)
    stats = result.store.stats()
    result.store.close()

    console.print("[bold]Lexicon Statistics[/bold]")
    console.print(f"  Total entries: {stats.total_entries}")
    for status_name, count in stats.entries_by_status.items():
        console.print(f"    {status_name}: {count}")
    console.print(f"  Source pages: {stats.source_pages}")
    console.print(f"  Pages with invalid entries: {stats.invalid_pages}")
    console.print(f"  Flagged for rescan: {stats.needs_rescan}")


@app.command()
def check():
    """Run integrity checks and list root/headword mismatches."""
    from lexicon.store.migrations import check_integrity

    config = load_config()
    result = _bootstrap(config)
    store = result.store
    ok, errors = check_integrity(store.conn)
    mismatches = store.root_mismatches()
    store.close()

    if ok:
        console.print("[green]Integrity check passed.[/green]")
    for error in errors:
        console.print(f"  [red]{error}[/red]")

    if mismatches:
        table = Table(title=f"Root mismatches ({len(mismatches)})")
        table.add_column("id")
        table.add_column("word")
        table.add_column("root")
        table.add_column("page")
        for entry in mismatches:
            table.add_row(entry.id, entry.hebrew_word, entry.root, entry.source_page)
        console.print(table)
    if not ok:
        raise typer.Exit(1)


@app.command()
def validate(
    start: Annotated[int, typer.Argument(help="First page number")],
    end: Annotated[int, typer.Argument(help="Last page number (inclusive)")],
    include_valid: Annotated[
        bool,
        typer.Option("--include-valid", help="Re-check entries already marked valid")
    ] = False,
    batch_size: Annotated[
        Optional[int],
        typer.Option("--batch-size", "-b", help="Entries per request")
    ] = None,
    max_requests: Annotated[
        Optional[int],
        typer.Option("--max-requests", help="Stop after this many requests")
    ] = None,
):
    """Validate unchecked entries page by page.

    Examples:
        lexicon validate 44 120
        lexicon validate 44 60 --include-valid --max-requests 20
    """
    if end < start:
        _cli_error("Invalid page range", f"{start}..{end}")
        raise typer.Exit(1)
    config = load_config()
    _run_sweep(config, max_requests, lambda orch, cb: orch.run_validation_sweep(
        start, end, include_valid=include_valid, batch_size=batch_size, on_progress=cb,
    ))


@app.command()
def correct(
    start: Annotated[int, typer.Option("--start", help="First page number (0 = all pages)")] = 0,
    end: Annotated[int, typer.Option("--end", help="Last page number")] = 0,
    batch_size: Annotated[
        Optional[int],
        typer.Option("--batch-size", "-b", help="Entries per request")
    ] = None,
    max_requests: Annotated[
        Optional[int],
        typer.Option("--max-requests", help="Stop after this many requests")
    ] = None,
):
    """Correct invalid entries against their page images."""
    config = load_config()
    _run_sweep(config, max_requests, lambda orch, cb: orch.run_correction_sweep(
        start, end, batch_size=batch_size, on_progress=cb,
    ))


@app.command(name="correct-pages")
def correct_pages(
    pages: Annotated[list[str], typer.Argument(help="Page ids, e.g. fuerst_lex_0046.jpg")],
    max_requests: Annotated[
        Optional[int],
        typer.Option("--max-requests", help="Stop after this many requests")
    ] = None,
):
    """Correct invalid entries on specific pages."""
    config = load_config()
    _run_sweep(config, max_requests, lambda orch, cb: orch.run_corrections_on_pages(
        pages, on_progress=cb,
    ))


@app.command()
def scan(
    pages: Annotated[
        Optional[list[str]],
        typer.Argument(help="Page numbers to extract, e.g. 41 or p.0041")
    ] = None,
    missing: Annotated[
        bool,
        typer.Option("--missing", help="Extract every page with no entries yet")
    ] = False,
    start: Annotated[Optional[int], typer.Option("--start", help="First page for --missing")] = None,
    end: Annotated[Optional[int], typer.Option("--end", help="Last page for --missing")] = None,
    images: Annotated[
        Optional[list[Path]],
        typer.Option("--image", "-i", help="Local page image to extract (repeatable)")
    ] = None,
    prompt: Annotated[
        Optional[str],
        typer.Option("--prompt", "-p", help="Extra extraction instructions")
    ] = None,
    max_requests: Annotated[
        Optional[int],
        typer.Option("--max-requests", help="Stop after this many requests")
    ] = None,
):
    """Extract entries directly from page images.

    Examples:
        lexicon scan --missing
        lexicon scan 41 42 --prompt "Two columns per page"
        lexicon scan -i ./scans/fuerst_lex_0041.jpg
    """
    from lexicon.nlp.models import PageImage
    from lexicon.store.pages import parse_page_input

    numbers: list[int] = []
    for value in pages or []:
        number = parse_page_input(value)
        if number is None:
            _cli_error("Invalid page number", value)
            raise typer.Exit(1)
        numbers.append(number)

    page_images: list[PageImage] = []
    for path in images or []:
        try:
            page_images.append(PageImage(name=path.name, data=path.read_bytes(), source_url=str(path)))
        except OSError as e:
            _cli_error(f"Could not read {path}", str(e))
            raise typer.Exit(1)

    if not numbers and not page_images and not missing:
        _cli_error("Nothing to scan", "give page numbers, --image or --missing")
        raise typer.Exit(1)

    config = load_config()
    naming = config.pages

    def run(orch, cb):
        targets: list[str | PageImage] = [naming.filename(n) for n in numbers]
        if missing:
            targets.extend(
                naming.filename(n) for n in orch.store.missing_page_numbers(
                    naming.prefix, naming.extension,
                    start if start is not None else naming.first_page,
                    end if end is not None else naming.last_page,
                )
            )
        targets.extend(page_images)
        return orch.run_extraction_sweep(targets, prompt=prompt, on_progress=cb)

    _run_sweep(config, max_requests, run, strongs=_strongs_index(config))


@app.command(name="export-batch")
def export_batch(
    kind: Annotated[str, typer.Argument(help="validate, correct or extract")],
    output: Annotated[Path, typer.Option("-o", "--output", help="Output .jsonl file")],
    start: Annotated[int, typer.Option("--start", help="First page number")] = 0,
    end: Annotated[int, typer.Option("--end", help="Last page number")] = 0,
    include_valid: Annotated[
        bool,
        typer.Option("--include-valid", help="Include entries already marked valid")
    ] = False,
    images: Annotated[
        Optional[list[Path]],
        typer.Option("--image", "-i", help="Page image to extract (repeatable)")
    ] = None,
    missing: Annotated[
        bool,
        typer.Option("--missing", help="Extract every missing page in the configured range")
    ] = False,
    prompt: Annotated[
        Optional[str],
        typer.Option("--prompt", "-p", help="Extra extraction instructions")
    ] = None,
):
    """Write a batch request file for offline processing.

    Examples:
        lexicon export-batch validate --start 44 --end 100 -o validate.jsonl
        lexicon export-batch correct -o correct.jsonl
        lexicon export-batch extract --missing -o extract.jsonl
    """
    from lexicon.batch.codec import (
        build_correction_batch_jsonl,
        build_extraction_batch_jsonl,
        build_validation_batch_jsonl,
    )
    from lexicon.nlp.models import PageImage
    from lexicon.sweep.images import ImageFetcher
    from lexicon.sweep.orchestrator import SweepOrchestrator

    if kind not in ("validate", "correct", "extract"):
        _cli_error("Unknown batch kind", kind)
        raise typer.Exit(1)
    if kind == "validate" and (not start or not end):
        _cli_error("Validation export needs --start and --end")
        raise typer.Exit(1)

    config = load_config()
    result = _bootstrap(config)
    store = result.store
    fetcher = ImageFetcher(config.pages)
    with _make_judge(config) as judge:
        orchestrator = SweepOrchestrator(store, judge, config, fetcher, session_logging=False)
        entries = []
        if kind == "validate":
            entries = orchestrator.collect_validation_entries(start, end, include_valid)
        elif kind == "correct":
            entries = orchestrator.collect_correction_entries(start, end)

    if kind == "validate":
        content = build_validation_batch_jsonl(entries, config.judge, config.sweep.validation_batch_size)
        count = len(entries)
    elif kind == "correct":
        content = build_correction_batch_jsonl(
            entries, config.judge, config.sweep.correction_batch_size, image_for=fetcher.fetch,
        )
        count = len(entries)
    else:
        page_images: list[PageImage] = []
        for path in images or []:
            try:
                page_images.append(PageImage(name=path.name, data=path.read_bytes()))
            except OSError as e:
                _cli_error(f"Could not read {path}", str(e))
        if missing:
            naming = config.pages
            for number in store.missing_page_numbers(
                naming.prefix, naming.extension, naming.first_page, naming.last_page
            ):
                image = fetcher.fetch_page(naming.filename(number))
                if image is not None:
                    page_images.append(image)
        content = build_extraction_batch_jsonl(page_images, config.judge, prompt)
        count = len(page_images)
    store.close()

    if count == 0:
        console.print("[yellow]Nothing to export.[/yellow]")
        return
    if not _safe_write_bytes(output, content.encode("utf-8"), "batch file"):
        raise typer.Exit(1)
    console.print(f"[green]Wrote {count} items to {output}[/green]")


@app.command(name="import-batch")
def import_batch(
    kind: Annotated[str, typer.Argument(help="validate, correct or extract")],
    file: Annotated[Path, typer.Argument(help="Batch result file (.json, .jsonl, .txt)")],
):
    """Apply a batch result file to the store."""
    from lexicon.batch.codec import (
        apply_correction_results,
        apply_extraction_results,
        apply_validation_results,
        parse_batch_results,
    )

    if kind not in ("validate", "correct", "extract"):
        _cli_error("Unknown batch kind", kind)
        raise typer.Exit(1)
    try:
        text = file.read_text(encoding="utf-8")
    except OSError as e:
        _cli_error("Could not read batch file", str(e))
        raise typer.Exit(1)

    records = parse_batch_results(text)
    if not records:
        console.print("[yellow]Batch file does not contain any recognizable entries.[/yellow]")
        raise typer.Exit(1)

    config = load_config()
    result = _bootstrap(config)
    store = result.store
    session = SweepLogger(f"import-{kind}", logs_dir=config.logs_dir)

    with Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Applying results...", total=len(records))

        def on_progress(done: int, total: int) -> None:
            progress.update(task, completed=done, total=total)

        if kind == "validate":
            summary = apply_validation_results(store, records, on_progress)
        elif kind == "correct":
            summary = apply_correction_results(store, records, on_progress)
        else:
            summary = apply_extraction_results(
                store, records, _strongs_index(config), config.pages, on_progress,
            )

    session.log_import(kind, summary.total, summary.applied, summary.skipped)
    session.finalize("completed", {"invalid_pages": len(store.pages_with_invalid_status())})
    store.close()
    console.print(
        f"[green]Applied {summary.applied} of {summary.total} records[/green]"
        f" [dim]({summary.skipped} skipped)[/dim]"
    )


@app.command(name="missing-pages")
def missing_pages(
    start: Annotated[Optional[int], typer.Option("--start", help="First page number")] = None,
    end: Annotated[Optional[int], typer.Option("--end", help="Last page number")] = None,
):
    """List page numbers with no extracted entries."""
    config = load_config()
    naming = config.pages
    result = _bootstrap(config)
    missing = result.store.missing_page_numbers(
        naming.prefix, naming.extension,
        start if start is not None else naming.first_page,
        end if end is not None else naming.last_page,
    )
    result.store.close()
    if not missing:
        console.print("[green]No missing pages.[/green]")
        return
    console.print(f"[bold]{len(missing)} missing pages[/bold]")
    console.print(", ".join(str(n) for n in missing))


@app.command(name="invalid-pages")
def invalid_pages():
    """List pages that still hold invalid entries."""
    config = load_config()
    result = _bootstrap(config)
    store = result.store
    pages = store.pages_with_invalid_status()
    for page in pages:
        console.print(f"  {page}  [dim]{len(store.invalid_by_page(page))} invalid[/dim]")
    store.close()
    console.print(f"[bold]{len(pages)} pages[/bold]")


@app.command(name="rebuild-ids")
def rebuild_ids(
    prefix: Annotated[Optional[str], typer.Option("--prefix", help="Id prefix")] = None,
    start_at: Annotated[int, typer.Option("--start-at", help="First number")] = 1,
    pad_width: Annotated[int, typer.Option("--pad", help="Zero-pad numbers to this width")] = 0,
    sort_by: Annotated[
        str,
        typer.Option("--sort-by", help="consonantal, word, source or date")
    ] = "consonantal",
    descending: Annotated[bool, typer.Option("--desc", help="Descending order")] = False,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation")] = False,
):
    """Renumber every entry id in a chosen order."""
    from pydantic import ValidationError

    from lexicon.store.models import RebuildIdsOptions

    config = load_config()
    try:
        options = RebuildIdsOptions(
            prefix=prefix if prefix is not None else config.id_prefix,
            start_at=start_at,
            pad_width=pad_width,
            sort_by=sort_by,
            sort_dir="desc" if descending else "asc",
        )
    except ValidationError as e:
        _cli_error("Invalid options", str(e.errors()[0]["msg"]))
        raise typer.Exit(1)

    if not yes and not typer.confirm(f"Renumber all ids as {options.format_id(0)}, {options.format_id(1)}, ...?"):
        raise typer.Exit(0)

    result = _bootstrap(config)
    outcome = result.store.rebuild_ids(options)
    result.store.close()
    console.print(f"[green]Rebuilt ids:[/green] {outcome.updated} of {outcome.total} changed")


@app.command(name="reprocess-strongs")
def reprocess_strongs():
    """Recompute Strong's numbers for every entry."""
    config = load_config()
    index = _strongs_index(config)
    if not index.available:
        _cli_error("Strong's index not found", ", ".join(config.strongs_locations))
        raise typer.Exit(1)
    result = _bootstrap(config)
    outcome = result.store.reprocess_strongs_numbers(index)
    result.store.close()
    console.print(f"[green]Strong's numbers:[/green] {outcome.updated} of {outcome.total} updated")


@app.command(name="move-numerals")
def move_numerals():
    """Move trailing Roman numerals from headwords to definitions."""
    config = load_config()
    result = _bootstrap(config)
    outcome = result.store.move_trailing_roman_numeral_to_definition()
    result.store.close()
    console.print(f"[green]Roman numerals moved:[/green] {outcome.updated} of {outcome.total} entries")


@app.command(name="clean-roots")
def clean_roots():
    """Strip trailing Roman numerals from root fields."""
    config = load_config()
    result = _bootstrap(config)
    outcome = result.store.clean_root_field()
    result.store.close()
    console.print(f"[green]Roots cleaned:[/green] {outcome.updated} of {outcome.total} entries")


@app.command(name="replace-pos")
def replace_pos(
    find: Annotated[str, typer.Argument(help="Part of speech to replace")],
    replace: Annotated[str, typer.Argument(help="Replacement")],
):
    """Replace a part-of-speech value everywhere."""
    config = load_config()
    result = _bootstrap(config)
    changed = result.store.find_replace_part_of_speech(find, replace)
    result.store.close()
    console.print(f"[green]Updated {changed} entries.[/green]")


@app.command(name="delete-page")
def delete_page(
    page: Annotated[str, typer.Argument(help="Page id, e.g. fuerst_lex_0046.jpg")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation")] = False,
):
    """Delete every entry extracted from a page."""
    if not yes and not typer.confirm(f"Delete all entries from {page}?"):
        raise typer.Exit(0)
    config = load_config()
    result = _bootstrap(config)
    removed = result.store.delete_by_page(page)
    result.store.close()
    console.print(f"[green]Deleted {removed} entries.[/green]")


@app.command(name="mark-rescan")
def mark_rescan(
    ids: Annotated[list[str], typer.Argument(help="Entry ids")],
):
    """Flag entries for manual rescan."""
    config = load_config()
    result = _bootstrap(config)
    marked = result.store.mark_for_rescan(ids)
    result.store.close()
    console.print(f"[green]Flagged {marked} entries.[/green]")


@app.command()
def backup(
    output: Annotated[Path, typer.Argument(help="Where to write the SQLite image")],
):
    """Write the current store image to a file."""
    config = load_config()
    result = _bootstrap(config)
    data = result.store.export_bytes()
    result.store.close()
    if not _safe_write_bytes(output, data, "backup"):
        raise typer.Exit(1)
    console.print(f"[green]Saved:[/green] {output} ({len(data) / 1024:.0f} KB)")


@app.command()
def reset(
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation")] = False,
):
    """Replace the store with a fresh, empty one (cache and service too)."""
    if not yes and not typer.confirm("This deletes every entry. Continue?"):
        raise typer.Exit(0)
    config = load_config()
    result = _bootstrap(config, force_fresh=True)
    result.store.close()
    console.print("[green]Store reset.[/green]")


@app.command(name="export-json")
def export_json(
    output: Annotated[Path, typer.Argument(help="Output JSON file")],
):
    """Export all entries as JSON."""
    from lexicon.store.migrations import export_to_json

    config = load_config()
    result = _bootstrap(config)
    count = export_to_json(result.store, output)
    result.store.close()
    console.print(f"[green]Exported {count} entries to {output}[/green]")


@app.command(name="import-json")
def import_json(
    file: Annotated[Path, typer.Argument(help="JSON file written by export-json")],
):
    """Import (upsert) entries from JSON."""
    from lexicon.store.migrations import import_from_json

    config = load_config()
    result = _bootstrap(config)
    try:
        count = import_from_json(result.store, file)
    except (FileNotFoundError, ValueError, RuntimeError) as e:
        _cli_error("Import failed", str(e))
        raise typer.Exit(1)
    finally:
        result.store.close()
    console.print(f"[green]Imported {count} entries.[/green]")


@app.command()
def logs(
    sessions: Annotated[
        int,
        typer.Option("-n", "--sessions", help="Number of recent sessions to analyze")
    ] = 10,
):
    """Summarize recent sweep and import sessions."""
    config = load_config()
    analysis = analyze_logs(limit=sessions, logs_dir=config.logs_dir)
    if "error" in analysis:
        console.print(f"[yellow]{analysis['error']}[/yellow]")
        return

    console.print(f"[bold]Log Analysis[/bold] ({analysis['sessions_analyzed']} sessions)")
    console.print(f"  [dim]Pages processed:[/dim] {analysis['pages_processed']}")
    console.print(f"  [dim]Requests:[/dim] {analysis['requests']}")
    console.print(f"  [dim]Entries submitted:[/dim] {analysis['entries_submitted']}")
    console.print(f"  [dim]Entries updated:[/dim] {analysis['entries_updated']}")
    if analysis["invalid_rate"] is not None:
        console.print(f"  [dim]Marked invalid:[/dim] {analysis['invalid_rate']:.1f}%")
    for key, count in sorted(analysis["outcomes"].items()):
        console.print(f"  [dim]{key}:[/dim] {count}")
    for kind, count in sorted(analysis["error_types"].items()):
        console.print(f"  [red]{kind}:[/red] {count}")


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option("--version", "-v", help="Show version")
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Debug logging")
    ] = False,
):
    """Lexicon - Hebrew lexicon store and review sweeps."""
    if version:
        console.print(f"lexicon {__version__}")
        raise typer.Exit(0)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def main():
    """Entry point."""
    app()


if __name__ == "__main__":
    main()
