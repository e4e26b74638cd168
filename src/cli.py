"""CLI for inspecting annotation feed pages and reply threads."""

import json
import logging
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

from margin.anchor import anchor_for_item, build_anchor_url
from margin.config import MarginConfig, load_config, merge_cli_overrides
from margin.errors import NormalizationReport
from margin.feed import prepare_page
from margin.items import FeedItem, ReplyNode, TextQuoteSelector
from margin.normalize import normalize_replies
from margin.threads import build_tree, count_nodes, forest_to_dicts, thread_depth

app = typer.Typer(
    name="margin",
    help="Inspect annotation feed pages and reply threads from API dumps.",
)

console = Console()
_stderr_console = Console(stderr=True)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        from margin import __version__

        console.print(f"margin {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    config_path: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to a .margin.toml file."),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Log debug output to stderr."),
    ] = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
) -> None:
    """Margin - annotation feed and thread inspector."""
    config = load_config(config_path)
    if verbose:
        config = merge_cli_overrides(config, log_level="DEBUG")
    logging.basicConfig(
        level=config.log_level,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = config


def _config(ctx: typer.Context) -> MarginConfig:
    return ctx.obj if isinstance(ctx.obj, MarginConfig) else load_config()


def _load_json(path: Path) -> object:
    """Read a JSON dump, exiting with a readable error on failure."""
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        console.print(f"[red]Error:[/red] Cannot read {path}: {exc.strerror or exc}")
        raise typer.Exit(1)
    except json.JSONDecodeError as exc:
        console.print(f"[red]Error:[/red] {path} is not valid JSON: {exc.msg} (line {exc.lineno})")
        raise typer.Exit(1)


def _print_report(report: NormalizationReport) -> None:
    if not report.clean:
        _stderr_console.print(f"[yellow]{escape(report.summary_text())}[/yellow]")


@app.command(name="anchor")
def anchor_cmd(
    url: Annotated[str, typer.Argument(help="Page URL the passage lives on.")],
    exact: Annotated[str, typer.Option("--exact", "-e", help="Exact quoted text.")] = "",
    prefix: Annotated[Optional[str], typer.Option("--prefix", help="Text just before the quote.")] = None,
    suffix: Annotated[Optional[str], typer.Option("--suffix", help="Text just after the quote.")] = None,
) -> None:
    """Print a scroll-to-text deep link for a quoted passage."""
    selector = TextQuoteSelector(exact=exact, prefix=prefix, suffix=suffix)
    print(build_anchor_url(url, selector))


def _add_branches(tree: Tree, forest: list[ReplyNode], max_depth: int) -> None:
    """Attach replies to ``tree`` depth-first, eliding levels past ``max_depth``."""
    stack: list[tuple[Tree, ReplyNode, int]] = [(tree, node, 0) for node in reversed(forest)]
    while stack:
        parent, node, depth = stack.pop()
        label = f"[bold]{escape(node.author.label or 'unknown')}[/bold] {escape(node.text)}"
        branch = parent.add(label)
        if not node.children:
            continue
        if depth + 1 >= max_depth:
            hidden = count_nodes(node.children)
            branch.add(f"[dim]... {hidden} more repl{'y' if hidden == 1 else 'ies'}[/dim]")
            continue
        stack.extend((branch, child, depth + 1) for child in reversed(node.children))


@app.command(name="thread")
def thread_cmd(
    ctx: typer.Context,
    path: Annotated[Path, typer.Argument(help="JSON file with a reply list or {'items': [...]}.")],
    root: Annotated[str, typer.Option("--root", "-r", help="Identity of the thread's root annotation.")],
    max_depth: Annotated[
        Optional[int],
        typer.Option("--depth", min=1, help="Nesting levels to display."),
    ] = None,
    as_json: Annotated[bool, typer.Option("--json", help="Print the nested thread as JSON.")] = False,
) -> None:
    """Nest a flat reply batch and print it as a tree."""
    config = merge_cli_overrides(_config(ctx), max_depth=max_depth)
    data = _load_json(path)
    raw_replies = data.get("items") if isinstance(data, dict) else data
    if not isinstance(raw_replies, list):
        console.print("[red]Error:[/red] Expected a JSON list of replies or an object with 'items'.")
        raise typer.Exit(1)

    report = NormalizationReport()
    replies = normalize_replies(raw_replies, root, report=report)
    forest = build_tree(replies, root)
    _print_report(report)

    if as_json:
        try:
            text = json.dumps(forest_to_dicts(forest), indent=2)
        except RecursionError:
            console.print(
                f"[red]Error:[/red] Thread is nested {thread_depth(forest)} levels deep, "
                "too deep to print as JSON. Use the tree view instead."
            )
            raise typer.Exit(1)
        print(text)
        return

    tree = Tree(f"[bold]{escape(root)}[/bold] ({len(replies)} replies, depth {thread_depth(forest)})")
    _add_branches(tree, forest, config.threads.max_display_depth)
    console.print(tree)


def _item_row(item: FeedItem) -> list[str]:
    content = item.content
    kind = str(item.kind)
    if item.is_collection_item:
        names = [c.name for c in item.context] or ([item.collection.name] if item.collection else [])
        kind = f"{kind} → {', '.join(n for n in names if n) or '?'}"
    created = item.created_at.strftime("%Y-%m-%d %H:%M") if item.created_at else ""
    return [
        kind,
        content.uri or content.id,
        content.author.label,
        content.motivation,
        created,
        anchor_for_item(item),
    ]


@app.command(name="feed")
def feed_cmd(
    ctx: typer.Context,
    path: Annotated[Path, typer.Argument(help="JSON file with one feed response page.")],
    motivation: Annotated[
        Optional[str],
        typer.Option("--motivation", "-m", help="all, commenting, highlighting or bookmarking."),
    ] = None,
    sort: Annotated[
        Optional[str],
        typer.Option("--sort", "-s", help="none, recent or popular."),
    ] = None,
    limit: Annotated[
        Optional[int],
        typer.Option("--limit", min=1, help="Page size the page was requested with."),
    ] = None,
    no_group: Annotated[
        bool,
        typer.Option("--no-group", help="Do not merge adjacent collection cards."),
    ] = False,
    as_json: Annotated[bool, typer.Option("--json", help="Print the reconciled page as JSON.")] = False,
) -> None:
    """Reconcile one feed page and print the cards it would render."""
    config = merge_cli_overrides(
        _config(ctx),
        motivation=motivation,
        sort=sort,
        page_size=limit,
        group_collections=False if no_group else None,
    )
    data = _load_json(path)
    if isinstance(data, list):
        data = {"items": data}
    if not isinstance(data, dict):
        console.print("[red]Error:[/red] Expected a JSON object with 'items' or a list of items.")
        raise typer.Exit(1)

    report = NormalizationReport()
    page = prepare_page(
        data,
        limit=config.feed.page_size,
        motivation=config.feed.motivation,
        group=config.feed.group_collections,
        sort=config.feed.sort,
        report=report,
    )
    _print_report(report)

    if as_json:
        print(page.model_dump_json(indent=2))
        return

    table = Table(title=f"{len(page.items)} of {page.fetched_count} fetched item(s)")
    for column in ("Kind", "Identity", "Author", "Motivation", "Created", "Link"):
        table.add_column(column)
    for item in page.items:
        table.add_row(*(escape(cell) for cell in _item_row(item)))
    console.print(table)
    if page.has_more:
        console.print(f"[dim]More items available (cursor: {page.cursor or 'none'})[/dim]")
