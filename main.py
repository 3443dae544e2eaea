#!/usr/bin/env python3
"""
Semantic Replay CLI

Annotates recorded rrweb sessions with machine-detected UI labels.
"""

import asyncio
import json
import os
from pathlib import Path
from typing import Annotated, Optional

import typer
from dotenv import load_dotenv
from rich.console import Console

from config import EmptyResultsPolicy, get_config, update_config
from utils.logger import THEME, AnnotationLogger
from utils.tracking import Timer

load_dotenv()

# Create Typer app
app = typer.Typer(
    name="semantic-replay",
    help="Annotate recorded browser sessions with semantic UI labels",
    rich_markup_mode="rich",
)

console = Console(theme=THEME)


def _load_events_or_exit(path: Path):
    from recorder.events import load_events

    if not path.exists():
        console.print(f"[red]✗[/red] Events file not found: {path}")
        raise typer.Exit(1)

    try:
        events = load_events(path)
    except (ValueError, KeyError) as e:
        console.print(f"[red]✗[/red] Could not read events from {path}: {e}")
        raise typer.Exit(1)

    if not events:
        console.print(f"[red]✗[/red] No events in {path}")
        raise typer.Exit(1)
    return events


def _load_session_or_exit(path: Path):
    from analyzer.schema import ProcessedSession

    if not path.exists():
        console.print(f"[red]✗[/red] Labels file not found: {path}")
        raise typer.Exit(1)
    return ProcessedSession.load(path)


@app.command()
def annotate(
    events_file: Annotated[
        Path,
        typer.Argument(help="Path to recorded rrweb events (.json)"),
    ],
    output: Annotated[
        Optional[Path],
        typer.Option("-o", "--output", help="Output path for labels (.json or .yaml)"),
    ] = None,
    service_url: Annotated[
        Optional[str],
        typer.Option("--service-url", help="Analysis service URL (default: $ANALYSIS_SERVICE_URL)"),
    ] = None,
    interval: Annotated[
        float,
        typer.Option("--interval", help="Seconds between results polls"),
    ] = 10.0,
    max_attempts: Annotated[
        int,
        typer.Option("--max-attempts", help="Maximum results polls per snapshot"),
    ] = 120,
    accept_empty: Annotated[
        bool,
        typer.Option("--accept-empty", help="Treat an empty results response as final"),
    ] = False,
    enhanced: Annotated[
        Optional[Path],
        typer.Option("--enhanced", help="Also write the events with semanticLabels attached"),
    ] = None,
    headless: Annotated[
        bool,
        typer.Option("--headless/--headed", help="Run the offscreen browser headless"),
    ] = True,
) -> None:
    """Annotate every full snapshot of a recorded session."""
    from playwright.async_api import Error as PlaywrightError

    from analyzer.processor import SemanticProcessor
    from analyzer.errors import ReconstructionError
    from analyzer.timeline import enhance_events

    events = _load_events_or_exit(events_file)

    config = get_config()
    update_config(
        service_url=service_url or os.getenv("ANALYSIS_SERVICE_URL") or config.service_url,
        headless=headless,
    )
    config.poll.interval = interval
    config.poll.max_attempts = max_attempts
    if accept_empty:
        config.poll.empty_results = EmptyResultsPolicy.ACCEPT_EMPTY

    output_path = output or config.labels_dir / f"{events_file.stem}.json"

    # Initialize logger and tracking
    logger = AnnotationLogger("annotate", logs_dir=config.logs_dir)
    timer = Timer("Annotation")

    async def run():
        async with SemanticProcessor(config, logger=logger) as processor:
            session = await processor.process_session(events, source=str(events_file))
            return session, processor

    try:
        timer.start()

        logger.header("Semantic Annotation")
        logger.info(f"Events: [cyan]{events_file}[/cyan] ({len(events)} events)")
        logger.info(f"Service: [cyan]{config.service_url}[/cyan]")
        logger.info(
            f"Polling: every {config.poll.interval:g}s, at most {config.poll.max_attempts} times "
            f"({config.poll.empty_results})"
        )

        logger.step("Processing full snapshots...")
        try:
            session, processor = asyncio.run(run())
        except ReconstructionError as e:
            logger.error(e.message)
            raise typer.Exit(1)
        except PlaywrightError as e:
            logger.error(f"Browser failed: {e}")
            logger.print("  [dim]Install it with: playwright install chromium[/dim]")
            raise typer.Exit(1)

        session.save(output_path)
        logger.success(f"Labels saved: [cyan]{output_path}[/cyan]")

        if enhanced:
            enhanced.parent.mkdir(parents=True, exist_ok=True)
            with open(enhanced, "w", encoding="utf-8") as f:
                json.dump(enhance_events(events, processor.index), f)
            logger.success(f"Enhanced events saved: [cyan]{enhanced}[/cyan]")

        timer.stop()

        # Print summary
        logger.header("Annotation Summary")

        stats = processor.stats
        if stats.cycles:
            logger.table(
                "Snapshots",
                ["Timestamp (ms)", "Status", "Labels", "Polls", "Time"],
                stats.get_cycle_summary(),
            )
            logger.print()

        ok = stats.total_failures == 0
        summary_data = {
            "Status": "[green]Completed[/green]" if ok else "[yellow]Completed with failures[/yellow]",
            "Duration": timer.elapsed_str,
            **stats.get_summary(),
            "Log File": str(logger.log_file),
        }
        logger.summary("Annotation Complete", summary_data, style="green" if ok else "yellow")

        logger.print()
        logger.info("To inspect the labels, run:")
        logger.print(f"  [dim]python main.py show {output_path}[/dim]")

    finally:
        logger.close()


@app.command()
def render(
    events_file: Annotated[
        Path,
        typer.Argument(help="Path to recorded rrweb events (.json)"),
    ],
    output: Annotated[
        Path,
        typer.Option("-o", "--output", help="Output image path"),
    ] = Path("snapshot.webp"),
    at: Annotated[
        Optional[float],
        typer.Option("--at", help="Playback time (ms); defaults to the last snapshot"),
    ] = None,
    labels_file: Annotated[
        Optional[Path],
        typer.Option("--labels", help="Draw overlays from this labels file"),
    ] = None,
) -> None:
    """Rebuild one snapshot offscreen and save it as an image (no service call)."""
    from playwright.async_api import async_playwright

    from analyzer.builder import NodeTreeBuilder
    from analyzer.capture import SurfaceCapturer
    from analyzer.errors import SemanticPipelineError
    from analyzer.timeline import LabelTimelineIndex
    from player.overlay import OverlayRenderer, PageOverlayLayer

    events = _load_events_or_exit(events_file)
    session = _load_session_or_exit(labels_file) if labels_file else None
    config = get_config()

    async def run() -> tuple[float | None, int]:
        capture = config.capture
        async with async_playwright() as p:
            browser = await p.chromium.launch(headless=config.headless)
            try:
                context = await browser.new_context(
                    viewport=capture.viewport,
                    device_scale_factor=capture.device_scale_factor,
                )
                page = await context.new_page()

                builder = NodeTreeBuilder(page, capture)
                surface = await builder.reconstruct_events(events, upto=at)

                overlays = 0
                if session is not None:
                    index = LabelTimelineIndex(session.labels, retire_superseded=config.retire_superseded)
                    renderer = OverlayRenderer(index, surface.mirror, PageOverlayLayer(page, "body"))
                    time = at if at is not None else surface.snapshot_timestamp
                    overlays = len(await renderer.refresh(time))

                image = await SurfaceCapturer().capture(surface, capture)
                output.parent.mkdir(parents=True, exist_ok=True)
                output.write_bytes(image.data)
                return surface.snapshot_timestamp, overlays
            finally:
                await browser.close()

    try:
        timestamp, overlays = asyncio.run(run())
    except SemanticPipelineError as e:
        console.print(f"[red]✗[/red] {e.message}")
        raise typer.Exit(1)

    console.print(f"[green]✓[/green] Snapshot at [bold]{timestamp:g}ms[/bold] saved: [cyan]{output}[/cyan]")
    if session is not None:
        console.print(f"  Overlays drawn: {overlays}")


@app.command()
def labels(
    labels_file: Annotated[
        Path,
        typer.Argument(help="Path to a labels file (.json or .yaml)"),
    ],
    at: Annotated[
        float,
        typer.Option("--at", help="Playback time (ms)"),
    ],
    retire: Annotated[
        bool,
        typer.Option("--retire/--no-retire", help="Only show labels of the latest snapshot"),
    ] = False,
) -> None:
    """List the labels active at a playback time."""
    from rich.table import Table

    from analyzer.timeline import LabelTimelineIndex

    session = _load_session_or_exit(labels_file)
    index = LabelTimelineIndex(session.labels, retire_superseded=retire)
    active = index.query(at)

    if not active:
        console.print(f"[yellow]No labels active at {at:g}ms.[/yellow]")
        return

    table = Table(title=f"Active labels at {at:g}ms")
    for col in ["ID", "Snapshot", "Label", "Box (x, y, w, h)", "Confidence", "Node"]:
        table.add_column(col)
    for label in active:
        box = label.bounding_box
        table.add_row(
            label.element_id,
            f"{label.timestamp:g}",
            label.label,
            f"{box.x:.1f}, {box.y:.1f}, {box.width:.1f}, {box.height:.1f}",
            f"{label.confidence:.0%}",
            str(label.node_id) if label.node_id is not None else "[dim]-[/dim]",
        )
    console.print(table)


@app.command()
def show(
    labels_file: Annotated[
        Path,
        typer.Argument(help="Path to a labels file (.json or .yaml)"),
    ],
) -> None:
    """Show a summary of a labels file."""
    from analyzer.timeline import LabelTimelineIndex

    session = _load_session_or_exit(labels_file)
    index = LabelTimelineIndex(session.labels)

    console.print(f"\n[bold blue]# {labels_file.name}[/bold blue]")
    console.print(f"\n[dim]ID:[/dim] {session.id}")
    console.print(f"[dim]Source:[/dim] {session.source or 'unknown'}")
    console.print(f"[dim]Created:[/dim] {session.created_at}")
    console.print(f"[dim]Labels:[/dim] {len(index)}")

    if index.timestamps:
        console.print(f"\n[bold]## Snapshots ({len(index.timestamps)})[/bold]")
        for ts in index.timestamps:
            bucket = index.labels_at(ts)
            matched = sum(1 for label in bucket if label.node_id is not None)
            console.print(f"\n  [cyan]{ts:g}ms[/cyan]: {len(bucket)} labels, {matched} matched to nodes")
            for label in bucket[:5]:
                console.print(f"    [label]{label.label}[/label] [dim]({label.confidence:.0%})[/dim]")
            if len(bucket) > 5:
                console.print(f"    [dim]... {len(bucket) - 5} more[/dim]")

    failures = session.stats.get("failures") or {}
    if failures:
        console.print("\n[bold]## Failures[/bold]")
        for kind, count in sorted(failures.items()):
            console.print(f"  [red]{kind}[/red]: {count}")


def main() -> None:
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
