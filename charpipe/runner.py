"""CLI runner for the consistent-character batch pipeline.

Usage:
    charpipe validate --scenes scenes/example.json
    charpipe generate --scenes scenes/example.json
    charpipe status --scenes scenes/example.json
    charpipe show-prompt --scenes scenes/example.json --item 2
    charpipe regenerate --scenes scenes/example.json --item 2
    charpipe export --scenes scenes/example.json --dest ./pictures
    charpipe reset --scenes scenes/example.json
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, TaskProgressColumn
from rich.table import Table

from charpipe.batch import BatchPipeline, BatchStateError
from charpipe.client import GeminiClient
from charpipe.config import get_api_key, load_config, resolve_output_paths
from charpipe.editor import EditError, format_prompt, parse_edited_prompt
from charpipe.models import COMPLETE, ERROR, BatchContext, CharacterIdentity, SceneItem
from charpipe.scene_parser import ValidationError, load_scenes
from charpipe import store
from charpipe.store import StatusError

logger = logging.getLogger(__name__)
console = Console()

# Default paths
_DEFAULT_CONFIG = "config.yaml"

_STATUS_STYLES = {
    "pending": "[dim]PENDING[/dim]",
    "analyzing": "[yellow]ANALYZING[/yellow]",
    "generating": "[yellow]GENERATING[/yellow]",
    "complete": "[green]DONE[/green]",
    "error": "[red]ERROR[/red]",
}


def _setup_logging(verbose: bool) -> None:
    """Configure logging based on verbosity."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    # Quiet down httpx unless debugging
    if not verbose:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)


def _make_client(config: dict) -> GeminiClient:
    return GeminiClient.from_config(config, api_key=get_api_key(config))


def _load_saved_batch(config: dict, scenes: str) -> tuple[BatchContext, dict]:
    paths = resolve_output_paths(config, scenes)
    ctx = store.load_status(paths["status_file"])
    if ctx is None or not ctx.items:
        raise FileNotFoundError(
            f"No results found in {paths['status_file']}. Run 'generate' first."
        )
    return ctx, paths


def _print_identity(identity: CharacterIdentity) -> None:
    table = Table(title="Consistent Character Profile", show_header=True)
    table.add_column("Character ID", style="green")
    for key in identity.appearance.to_dict():
        table.add_column(key.capitalize())
    table.add_row(identity.character_id, *identity.appearance.to_dict().values())
    console.print(table)


def _print_items(ctx: BatchContext) -> None:
    table = Table(title="Scenes", show_lines=True)
    table.add_column("#", justify="right", style="cyan")
    table.add_column("Scene", max_width=50)
    table.add_column("Status", justify="center")
    table.add_column("Result", max_width=50)

    for item in ctx.items:
        if item.status == COMPLETE:
            result = store.image_filename(item, ctx.identity)
        elif item.status == ERROR:
            result = f"Error: {escape(item.error or '')}"
        else:
            result = ""
        table.add_row(str(item.position), escape(item.scene_text), _STATUS_STYLES.get(item.status, item.status), result)

    console.print(table)


def _run_guarded(fn, *args) -> None:
    """Run a coroutine function, mapping expected errors to console messages."""
    try:
        asyncio.run(fn(*args))
    except FileNotFoundError as exc:
        console.print(f"[red]Error: {escape(str(exc))}[/red]")
        sys.exit(1)
    except ValidationError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        sys.exit(1)
    except (EditError, BatchStateError, KeyError, StatusError) as exc:
        console.print(f"[red]Error: {escape(str(exc))}[/red]")
        sys.exit(1)
    except ValueError as exc:
        console.print(f"[red]Configuration error: {escape(str(exc))}[/red]")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted. Progress has been saved to status.json.[/yellow]")
        sys.exit(130)


@click.group()
@click.option("--config", "-c", default=_DEFAULT_CONFIG, help="Path to config.yaml")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config: str, verbose: bool) -> None:
    """Consistent character batch image generator."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    _setup_logging(verbose)


@cli.command("validate")
@click.option("--scenes", "-s", required=True, help="Path to scene file (.json or .yaml)")
def cmd_validate(scenes: str) -> None:
    """Check a scene file and list its scenes."""
    try:
        items = load_scenes(scenes)
    except FileNotFoundError as exc:
        console.print(f"[red]Error: {escape(str(exc))}[/red]")
        sys.exit(1)
    except ValidationError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        sys.exit(1)

    console.print(f"File: [bold cyan]{Path(scenes).name}[/bold cyan] ({len(items)} scenes found)")
    _print_items(BatchContext(items=items))


@cli.command("generate")
@click.option("--scenes", "-s", required=True, help="Path to scene file (.json or .yaml)")
@click.pass_context
def cmd_generate(ctx: click.Context, scenes: str) -> None:
    """Generate prompts and images for every scene."""
    console.print("[bold]Starting batch generation...[/bold]")
    _run_guarded(_generate, ctx.obj["config"], scenes)


async def _generate(config_path: str, scenes: str) -> None:
    config = load_config(config_path)
    items = load_scenes(scenes)
    paths = resolve_output_paths(config, scenes)

    # Resolve the API key before touching earlier results
    async with _make_client(config) as client:
        if store.clear_batch(paths["batch_dir"]):
            console.print(f"  [dim]Replaced previous results in {paths['batch_dir']}[/dim]")

        console.print(f"\n[bold]Generating {len(items)} scenes from {Path(scenes).name}...[/bold]\n")

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("Starting...", total=len(items))

            def on_progress(processed: int, total: int, message: str) -> None:
                progress.update(task, completed=processed, description=escape(message[:80]))

            def on_identity(identity: CharacterIdentity) -> None:
                progress.console.print(f"  [bold]Pinned character:[/bold] [green]{identity.character_id}[/green]")

            def on_item(item: SceneItem) -> None:
                batch = pipeline.context
                if item.status == COMPLETE:
                    path = store.write_image(item, batch.identity, paths["images_dir"])
                    progress.console.print(f"  [green]Scene {item.position} completed -> {path}[/green]")
                elif item.status == ERROR:
                    progress.console.print(f"  [red]Scene {item.position} failed: {escape(item.error or '')}[/red]")
                store.save_status(paths["status_file"], batch, paths["images_dir"])

            pipeline = BatchPipeline(client, on_item=on_item, on_identity=on_identity, on_progress=on_progress)
            pipeline.load(items, source=str(scenes))
            result = await pipeline.run()

    store.save_status(paths["status_file"], result, paths["images_dir"])
    console.print()
    if result.identity:
        _print_identity(result.identity)
    else:
        console.print("[yellow]No character was pinned: the first scene failed.[/yellow]")

    done = sum(1 for item in result.items if item.is_success)
    console.print(
        f"\n[bold green]Batch processing complete: "
        f"{done}/{result.total} scenes generated.[/bold green]"
    )


@cli.command("status")
@click.option("--scenes", "-s", required=True, help="Path to scene file (.json or .yaml)")
@click.pass_context
def cmd_status(ctx: click.Context, scenes: str) -> None:
    """Show saved results for a scene file."""
    try:
        config = load_config(ctx.obj["config"])
        paths = resolve_output_paths(config, scenes)
        batch = store.load_status(paths["status_file"])
    except (FileNotFoundError, StatusError) as exc:
        console.print(f"[red]Error: {escape(str(exc))}[/red]")
        sys.exit(1)

    if batch is None:
        console.print("[yellow]No status file found. Batch has not been run yet.[/yellow]")
        return

    if batch.identity:
        _print_identity(batch.identity)
        console.print()
    _print_items(batch)

    done = sum(1 for item in batch.items if item.is_success)
    failed = sum(1 for item in batch.items if item.status == ERROR)
    console.print(f"[bold]Summary:[/bold]")
    console.print(f"  Processed: {batch.processed}/{batch.total}")
    console.print(f"  Completed: {done}, failed: {failed}")


@cli.command("show-prompt")
@click.option("--scenes", "-s", required=True, help="Path to scene file (.json or .yaml)")
@click.option("--item", "-i", "position", required=True, type=int, help="1-based scene number")
@click.pass_context
def cmd_show_prompt(ctx: click.Context, scenes: str, position: int) -> None:
    """Print the structured prompt of one scene as JSON."""
    try:
        config = load_config(ctx.obj["config"])
        batch, _ = _load_saved_batch(config, scenes)
        item = batch.get(position - 1)
    except (FileNotFoundError, KeyError, StatusError) as exc:
        console.print(f"[red]Error: {escape(str(exc))}[/red]")
        sys.exit(1)

    if item.prompt is None:
        console.print(f"[yellow]Scene {position} has no prompt yet.[/yellow]")
        return
    click.echo(format_prompt(item.prompt))


@cli.command("regenerate")
@click.option("--scenes", "-s", required=True, help="Path to scene file (.json or .yaml)")
@click.option("--item", "-i", "position", required=True, type=int, help="1-based scene number")
@click.option("--prompt-file", "-p", default=None, help="Edited prompt JSON (opens $EDITOR if omitted)")
@click.pass_context
def cmd_regenerate(ctx: click.Context, scenes: str, position: int, prompt_file: str | None) -> None:
    """Edit one scene's prompt and render it again."""
    _run_guarded(_regenerate, ctx.obj["config"], scenes, position, prompt_file)


async def _regenerate(config_path: str, scenes: str, position: int, prompt_file: str | None) -> None:
    config = load_config(config_path)
    batch, paths = _load_saved_batch(config, scenes)
    item = batch.get(position - 1)
    if item.prompt is None:
        raise BatchStateError(f"Scene {position} has no prompt to edit yet")

    if prompt_file:
        path = Path(prompt_file)
        if not path.exists():
            raise FileNotFoundError(f"Prompt file not found: {path}")
        text = path.read_text(encoding="utf-8")
    else:
        text = click.edit(format_prompt(item.prompt), extension=".json")
        if text is None:
            console.print("[yellow]No changes saved; nothing to regenerate.[/yellow]")
            return

    prompt = parse_edited_prompt(text)

    console.print(f"[bold]Regenerating scene {position}...[/bold]")
    async with _make_client(config) as client:
        pipeline = BatchPipeline(client)
        pipeline.restore(batch)
        item = await pipeline.rerun_item(item.id, prompt)

    if item.status == COMPLETE:
        path = store.write_image(item, batch.identity, paths["images_dir"])
        console.print(f"  [green]Scene {position} completed -> {path}[/green]")
    else:
        console.print(f"  [red]Scene {position} failed: {escape(item.error or '')}[/red]")
    store.save_status(paths["status_file"], batch, paths["images_dir"])


@cli.command("export")
@click.option("--scenes", "-s", required=True, help="Path to scene file (.json or .yaml)")
@click.option("--dest", "-d", required=True, help="Destination directory")
@click.pass_context
def cmd_export(ctx: click.Context, scenes: str, dest: str) -> None:
    """Copy completed images to a directory."""
    try:
        config = load_config(ctx.obj["config"])
        batch, _ = _load_saved_batch(config, scenes)
    except (FileNotFoundError, StatusError) as exc:
        console.print(f"[red]Error: {escape(str(exc))}[/red]")
        sys.exit(1)

    written = store.export_images(batch, Path(dest))
    if not written:
        console.print("[yellow]No completed images to export.[/yellow]")
        return
    for path in written:
        console.print(f"  [green]{path}[/green]")
    console.print(f"\n[bold green]Exported {len(written)} images.[/bold green]")


@cli.command("reset")
@click.option("--scenes", "-s", required=True, help="Path to scene file (.json or .yaml)")
@click.pass_context
def cmd_reset(ctx: click.Context, scenes: str) -> None:
    """Discard saved results, images and the pinned character."""
    try:
        config = load_config(ctx.obj["config"])
    except FileNotFoundError as exc:
        console.print(f"[red]Error: {escape(str(exc))}[/red]")
        sys.exit(1)

    paths = resolve_output_paths(config, scenes)
    if store.clear_batch(paths["batch_dir"]):
        console.print(f"[green]Reset: removed {paths['batch_dir']}[/green]")
    else:
        console.print("[dim]Nothing to reset.[/dim]")


def main() -> None:
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
