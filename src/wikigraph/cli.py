#!/usr/bin/env python3
"""
wg: CLI for the wiki tag graph

Usage:
    wg status                        # Graph counts for the wiki
    wg refresh                       # Rebuild, rewrite inherited tags, diagnostics
    wg add "Name, alias, #parent"    # Create an entry and link it in
    wg similar "Name, alias"         # Existing notes that look like an entry
    wg show wiki-tag                 # One node with its tags and edges
"""

from __future__ import annotations

import asyncio
import difflib
import json
import sys
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, NoReturn

import click
from click.exceptions import ClickException, UsageError

from . import __version__ as WIKIGRAPH_VERSION
from .config import ConfigurationError
from .graph import GraphInvariantError
from .models import Decision, SimilarityMatch
from .parser import ParseError

if TYPE_CHECKING:
    from .library import WikiLibrary


def run_async(coro):
    """Run async function synchronously."""
    return asyncio.run(coro)


# ─────────────────────────────────────────────────────────────────────────────
# Output Formatting
# ─────────────────────────────────────────────────────────────────────────────


def format_table(rows: list[dict], columns: list[str], max_widths: dict | None = None) -> str:
    """Format rows as a simple table."""
    if not rows:
        return ""

    max_widths = max_widths or {}

    def cell(row: dict, col: str) -> str:
        val = str(row.get(col, ""))
        limit = max_widths.get(col, 50)
        if len(val) > limit:
            val = val[: limit - 3] + "..."
        return val

    widths = {col: max([len(col)] + [len(cell(row, col)) for row in rows]) for col in columns}

    header = "  ".join(col.upper().ljust(widths[col]) for col in columns)
    separator = "  ".join("-" * widths[col] for col in columns)
    lines = [header, separator]
    for row in rows:
        lines.append("  ".join(cell(row, col).ljust(widths[col]) for col in columns))
    return "\n".join(lines)


def output(data, as_json: bool = False):
    """Output data as JSON or formatted text."""
    if as_json:
        click.echo(json.dumps(data, indent=2, default=str))
    else:
        click.echo(data)


def _match_rows(matches: list[SimilarityMatch]) -> list[dict]:
    return [
        {
            "wiki-tag": m.wiki_tag,
            "path": m.path,
            "similarity": f"{m.similarity:.2f}",
            "shared": m.intersection_size,
        }
        for m in matches
    ]


# ─────────────────────────────────────────────────────────────────────────────
# Error Handling
# ─────────────────────────────────────────────────────────────────────────────


def format_json_error(code: str, message: str, details: dict | None = None) -> str:
    """Format an error as JSON for --json-errors output."""
    error: dict[str, dict[str, object]] = {"error": {"code": code, "message": message}}
    if details:
        error["error"]["details"] = details
    return json.dumps(error)


def get_error_code_for_exception(exc: Exception) -> str:
    """Map exceptions to error codes."""
    if isinstance(exc, click.BadParameter):
        return "INVALID_ARGUMENT"
    elif isinstance(exc, click.MissingParameter):
        return "MISSING_ARGUMENT"
    elif isinstance(exc, click.NoSuchOption):
        return "UNKNOWN_OPTION"
    elif isinstance(exc, UsageError):
        return "USAGE_ERROR"
    elif isinstance(exc, ClickException):
        return "CLI_ERROR"
    elif isinstance(exc, ConfigurationError):
        return "CONFIGURATION_ERROR"
    elif isinstance(exc, GraphInvariantError):
        return "GRAPH_INVARIANT_VIOLATED"
    elif isinstance(exc, ParseError):
        return "PARSE_ERROR"
    elif isinstance(exc, FileExistsError):
        return "ALREADY_EXISTS"
    elif isinstance(exc, OSError):
        return "IO_ERROR"
    elif isinstance(exc, KeyError):
        return "NOT_FOUND"
    elif isinstance(exc, ValueError):
        return "INVALID_INPUT"
    return "UNKNOWN_ERROR"


def _error_message(error: Exception) -> str:
    # KeyError wraps its message in quotes
    if isinstance(error, KeyError) and error.args:
        return str(error.args[0])
    return str(error)


def _handle_error(ctx: click.Context, error: Exception, exit_code: int = 1) -> NoReturn:
    """Report an error as text or, with --json-errors, as JSON on stderr."""
    json_errors = ctx.obj.get("json_errors", False) if ctx.obj else False
    message = _error_message(error)
    if json_errors:
        click.echo(format_json_error(get_error_code_for_exception(error), message), err=True)
    else:
        click.echo(f"Error: {message}", err=True)
    sys.exit(exit_code)


class JsonErrorGroup(click.Group):
    """Click group that formats errors as JSON when --json-errors is set.

    This handles Click validation errors (bad option values, missing args, etc.)
    that occur before the command callback is invoked. Also provides typo
    suggestions for unknown commands.
    """

    def resolve_command(self, ctx, args):
        """Override to suggest similar commands for typos."""
        try:
            return super().resolve_command(ctx, args)
        except UsageError as e:
            cmd_name = args[0] if args else ""
            if cmd_name and "No such command" in str(e):
                matches = difflib.get_close_matches(
                    cmd_name, self.list_commands(ctx), n=1, cutoff=0.6
                )
                if matches:
                    raise UsageError(f"No such command '{cmd_name}'. Did you mean '{matches[0]}'?")
            raise

    def invoke(self, ctx):
        """Override invoke to catch and format errors."""
        try:
            return super().invoke(ctx)
        except ClickException as e:
            if ctx.params.get("json_errors"):
                code = get_error_code_for_exception(e)
                click.echo(format_json_error(code, e.format_message()), err=True)
                raise SystemExit(1)
            raise

    def main(
        self,
        args: Sequence[str] | None = None,
        prog_name: str | None = None,
        complete_var: str | None = None,
        standalone_mode: bool = True,
        **extra: Any,
    ) -> Any:
        """Override main to catch errors during argument parsing.

        A --json-errors flag anywhere on the command line is moved to the
        front so Click parses it as the global flag.
        """
        argv = list(args) if args is not None else list(sys.argv[1:])
        if "--json-errors" not in argv:
            return super().main(args, prog_name, complete_var, standalone_mode, **extra)

        argv = [a for a in argv if a != "--json-errors"]
        argv.insert(0, "--json-errors")

        try:
            return super().main(
                argv,
                prog_name,
                complete_var,
                standalone_mode=False,
                **extra,
            )
        except ClickException as e:
            code = get_error_code_for_exception(e)
            click.echo(format_json_error(code, e.format_message()), err=True)
            raise SystemExit(1)
        except click.exceptions.Abort:
            click.echo(format_json_error("ABORTED", "Aborted"), err=True)
            raise SystemExit(1)


def _open_library(ctx: click.Context) -> WikiLibrary:
    from .library import WikiLibrary

    try:
        return WikiLibrary.open()
    except (ConfigurationError, GraphInvariantError) as e:
        _handle_error(ctx, e)


# ─────────────────────────────────────────────────────────────────────────────
# Main CLI Group
# ─────────────────────────────────────────────────────────────────────────────


@click.group(cls=JsonErrorGroup, invoke_without_command=True)
@click.version_option(version=WIKIGRAPH_VERSION, prog_name="wg")
@click.option(
    "--json-errors",
    "json_errors",
    is_flag=True,
    help="Output errors as JSON (for programmatic use)",
)
@click.option(
    "--quiet",
    "-q",
    is_flag=True,
    envvar="WIKIGRAPH_QUIET",
    help="Suppress warnings, show only errors and essential output",
)
@click.pass_context
def cli(ctx: click.Context, json_errors: bool, quiet: bool):
    """wg: tag inheritance graph for a markdown wiki.

    Every note declares a ``wiki-tag`` and tags naming its parents. wg links
    notes through those tags and writes each note's inherited tags back into
    an ``inherited-tags::`` line.

    \b
    Quick start:
      wg status                          # Counts for the configured wiki
      wg refresh                         # Rebuild and rewrite inherited tags
      wg add "AGI, 通用人工智能, #AI //description"

    \b
    Inspect:
      wg show AGI                        # One node, its tags and edges
      wg similar "AGI, Artificial General Intelligence"
      wg components                      # Tag cycles merged into one component
      wg duplicates                      # wiki-tags claimed by several notes

    \b
    Configuration:
      WIKIGRAPH_ROOT=/path/to/wiki       # Or a .wikiconfig with wiki_folder
      WIKIGRAPH_LOG_LEVEL=INFO           # Show notes written, merges, splits
    """
    from ._logging import set_quiet_mode

    ctx.ensure_object(dict)
    ctx.obj["json_errors"] = json_errors
    ctx.obj["quiet"] = quiet

    if quiet:
        set_quiet_mode(True)

    if ctx.invoked_subcommand is None:
        ctx.invoke(status)


# ─────────────────────────────────────────────────────────────────────────────
# Status / Refresh
# ─────────────────────────────────────────────────────────────────────────────


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def status(ctx: click.Context, as_json: bool):
    """Show graph counts for the wiki."""
    library = _open_library(ctx)
    summary = library.summary()
    if as_json:
        output(summary.model_dump(), as_json=True)
        return

    click.echo(f"Wiki: {summary.root}")
    click.echo(f"Nodes: {summary.nodes}  Components: {summary.components}")
    click.echo(f"Tag cycles: {summary.multi_member_components}")
    click.echo(f"Unresolved tags: {summary.outer_references}")
    click.echo(f"Duplicate wiki-tags: {summary.duplicate_groups}")
    click.echo(f"Without header: {summary.no_header}  Invalid header: {summary.invalid_headers}")
    if summary.by_type:
        types = ", ".join(f"{kind}={count}" for kind, count in sorted(summary.by_type.items()))
        click.echo(f"By type: {types}")


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def refresh(ctx: click.Context, as_json: bool):
    """Rebuild the graph, rewrite inherited tags and the diagnostics note."""
    from .library import WikiLibrary
    from .config import get_wiki_root, load_settings

    try:
        library = WikiLibrary(get_wiki_root(), load_settings())
        result = library.refresh()
    except (ConfigurationError, GraphInvariantError, ParseError, OSError) as e:
        _handle_error(ctx, e)

    if as_json:
        output(result.model_dump(), as_json=True)
        return

    click.echo(f"Rebuilt {result.summary.nodes} node(s) in {result.summary.components} component(s)")
    click.echo(f"Updated {len(result.updated_paths)} note(s)")
    for path in result.updated_paths:
        click.echo(f"  {path}")
    click.echo(f"Diagnostics: {result.diagnostics_path}")


# ─────────────────────────────────────────────────────────────────────────────
# Entries
# ─────────────────────────────────────────────────────────────────────────────


def _interactive_confirm():
    async def confirm(matches: list[SimilarityMatch]) -> Decision:
        click.echo("Similar notes already exist:", err=True)
        click.echo(format_table(_match_rows(matches), ["wiki-tag", "path", "similarity", "shared"]), err=True)
        try:
            proceed = click.confirm("Create the entry anyway?", default=False, err=True)
        except click.exceptions.Abort:
            return "dismissed"
        return "proceed" if proceed else "cancel"

    return confirm


@cli.command()
@click.argument("entry")
@click.option("--folder", "-f", default="", help="Folder below the wiki root for the new note")
@click.option(
    "--type",
    "note_type",
    type=click.Choice(["wiki", "category", "disambiguation"]),
    default="wiki",
    help="note-type of the new entry",
)
@click.option("--yes", "-y", is_flag=True, help="Create the entry even if similar notes exist")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def add(ctx: click.Context, entry: str, folder: str, note_type: str, yes: bool, as_json: bool):
    """Create a new entry from ENTRY and link it into the graph.

    \b
    ENTRY grammar:
      "Name, alias1, alias2, #parent1, #parent2 //description"

    \b
    Examples:
      wg add "AGI, Artificial General Intelligence, 通用人工智能, #AI"
      wg add "Graph theory, #Mathematics //study of graphs" --folder=Math
    """
    from .entry_input import parse_entry_input

    try:
        candidate = parse_entry_input(entry, note_type=note_type)  # type: ignore[arg-type]
    except ValueError as e:
        _handle_error(ctx, e)

    library = _open_library(ctx)
    confirm = None if yes else _interactive_confirm()
    try:
        result = run_async(library.add_entry(candidate, folder=folder, confirm=confirm))
    except (ValueError, GraphInvariantError, ParseError, OSError) as e:
        _handle_error(ctx, e)

    if as_json:
        output(result.model_dump(), as_json=True)
        return

    if result.status == "exists":
        click.echo(f"Note already exists: {result.path}")
    elif result.status == "cancelled":
        click.echo("Cancelled, nothing was created.")
    elif result.status == "duplicate":
        click.echo(f"Created: {result.path}")
        click.echo(f"Warning: wiki-tag '{result.wiki_tag}' is claimed by another note", err=True)
    else:
        click.echo(f"Created: {result.path}")
        if result.merged_components:
            click.echo(f"Closed a tag cycle, merged: {', '.join(result.merged_components)}")
        if result.updated_paths:
            click.echo(f"Updated {len(result.updated_paths)} note(s)")


@cli.command()
@click.argument("entry")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def similar(ctx: click.Context, entry: str, as_json: bool):
    """List existing notes that look like ENTRY."""
    from .entry_input import parse_entry_input

    try:
        candidate = parse_entry_input(entry)
    except ValueError as e:
        _handle_error(ctx, e)

    matches = _open_library(ctx).similar(candidate)
    if as_json:
        output([m.model_dump() for m in matches], as_json=True)
        return
    if not matches:
        click.echo("No similar notes.")
        return
    click.echo(format_table(_match_rows(matches), ["wiki-tag", "path", "similarity", "shared"]))


# ─────────────────────────────────────────────────────────────────────────────
# Inspection
# ─────────────────────────────────────────────────────────────────────────────


@cli.command()
@click.argument("wiki_tag")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def show(ctx: click.Context, wiki_tag: str, as_json: bool):
    """Show one node: its tags, inherited tags, parents and children."""
    library = _open_library(ctx)
    try:
        info = library.describe(wiki_tag.lstrip("#"))
    except KeyError as e:
        _handle_error(ctx, e)

    if as_json:
        output(info.model_dump(), as_json=True)
        return

    click.echo(f"{info.wiki_tag} ({info.note_type})")
    click.echo(f"Path: {info.path}")
    click.echo(f"Component: {info.component}")
    for label, values in (
        ("Aliases", info.aliases),
        ("Tags", info.tags),
        ("Inherited", info.inherited_tags),
        ("Parents", info.parents),
        ("Children", info.children),
    ):
        click.echo(f"{label}: {', '.join(values) if values else '-'}")


@cli.command()
@click.option("--all", "show_all", is_flag=True, help="Include single-node components")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def components(ctx: click.Context, show_all: bool, as_json: bool):
    """List strongly connected components (tag cycles)."""
    library = _open_library(ctx)
    graph = library.graph
    keys = sorted(graph.components) if show_all else [c.key for c in graph.multi_member_components()]
    infos = [graph.component_info(key) for key in keys]

    if as_json:
        output([info.model_dump() for info in infos], as_json=True)
        return
    if not infos:
        click.echo("No tag cycles.")
        return
    rows = [
        {"key": info.key, "members": ", ".join(info.members), "parents": len(info.parents)}
        for info in infos
    ]
    click.echo(format_table(rows, ["key", "members", "parents"], {"members": 80}))


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def duplicates(ctx: click.Context, as_json: bool):
    """List wiki-tags claimed by more than one note."""
    library = _open_library(ctx)
    groups = {
        tag: sorted(node.path for node in group)
        for tag, group in sorted(library.graph.duplicates.items())
    }
    if as_json:
        output(groups, as_json=True)
        return
    if not groups:
        click.echo("No duplicate wiki-tags.")
        return
    for tag, paths in groups.items():
        click.echo(f"{tag}:")
        for path in paths:
            click.echo(f"  {path}")


# ─────────────────────────────────────────────────────────────────────────────
# Entry Point
# ─────────────────────────────────────────────────────────────────────────────


def main():
    """Entry point for wg CLI."""
    from ._logging import configure_logging

    configure_logging()
    cli()


if __name__ == "__main__":
    main()
