"""AISLive CLI — live vessel positions from aisstream.io.

Commands:
  init-db  — enable PostGIS and create the vessels table
  stream   — ingest the live feed into the database
  serve    — run the HTTP API (with ingestion, unless disabled)
  purge    — delete vessels not seen recently
  status   — database health and data freshness
  query    — list fresh vessels inside a bounding box
"""
from __future__ import annotations

import asyncio
import typer
from datetime import datetime, timezone
from rich.console import Console
from rich.table import Table
from typing import Optional


app = typer.Typer(
    name="aislive",
    help="Live vessel positions from aisstream.io.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command("init-db")
def init_database():
    """Enable PostGIS and create the vessels table."""
    from aislive.database import init_db

    with console.status("[bold]Creating database..."):
        init_db()
    console.print("[green]Database ready.[/green]")


@app.command("stream")
def stream(
    stream_time: str = typer.Option("0", "--stream-time", help="Stream duration (e.g. 30s, 5m, 1h; 0 = until Ctrl+C)"),
):
    """Ingest the aisstream.io feed into the database."""
    from aislive.config import settings
    from aislive.exceptions import MissingAPIKeyError
    from aislive.modules.aisstream_client import stream_ais

    duration_s = _parse_duration(stream_time)

    def _progress(stats: dict) -> None:
        console.print(
            f"  {stats['elapsed_s']}s [{stats['state']}]: "
            f"{stats['received']:,} frames, {stats['stored']:,} stored, "
            f"{stats['discarded_invalid'] + stats['discarded_decode']:,} rejected"
        )

    try:
        result = asyncio.run(stream_ais(
            api_key=settings.AISSTREAM_API_KEY,
            duration_seconds=duration_s,
            progress_callback=_progress,
        ))
    except MissingAPIKeyError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        console.print("[yellow]Stopped.[/yellow]")
        raise typer.Exit(0)

    console.print(
        f"[green]Done:[/green] {result['frames_received']:,} frames, "
        f"{result['stored']:,} vessel updates in {result['actual_duration_s']}s "
        f"({result['sessions_opened']} sessions)"
    )


@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(3000, "--port"),
    no_ingest: bool = typer.Option(False, "--no-ingest", help="Serve queries only, don't connect to the feed"),
):
    """Run the HTTP API."""
    import uvicorn
    from aislive.config import settings

    if no_ingest:
        settings.INGESTION_ENABLED = False
    console.print(f"API running at [cyan]http://{host}:{port}[/cyan] — press Ctrl+C to stop")
    uvicorn.run("aislive.main:app", host=host, port=port)


@app.command("purge")
def purge(
    max_age: Optional[int] = typer.Option(None, "--max-age", help="Minutes since last report (default: VESSEL_MAX_AGE_MINUTES)"),
):
    """Delete vessels that have not reported recently."""
    from aislive.database import SessionLocal
    from aislive.modules.maintenance import purge_stale_vessels

    db = SessionLocal()
    try:
        deleted = purge_stale_vessels(db, max_age_minutes=max_age)
    finally:
        db.close()
    console.print(f"[green]Deleted {deleted:,} stale vessels.[/green]")


@app.command("status")
def status():
    """Show database health and data freshness."""
    from sqlalchemy import func, text
    from sqlalchemy.exc import SQLAlchemyError
    from aislive.config import settings
    from aislive.database import SessionLocal
    from aislive.models.vessel import VesselState

    db = SessionLocal()
    try:
        console.print("[bold]System[/bold]")
        try:
            db_time = db.execute(text("SELECT now()")).scalar()
        except SQLAlchemyError as e:
            console.print(f"  Database: [red]unreachable[/red] ({e.__class__.__name__})")
            raise typer.Exit(1)
        console.print(f"  Database: [green]OK[/green] (server time {db_time})")
        console.print(
            f"  API key: {'[green]set[/green]' if settings.AISSTREAM_API_KEY else '[red]missing[/red]'}"
        )

        console.print("\n[bold]Data Freshness[/bold]")
        vessel_count = db.query(VesselState).count()
        latest = db.query(func.max(VesselState.last_seen)).scalar()
        if latest:
            age_s = (datetime.now(timezone.utc) - latest).total_seconds()
            color = "green" if age_s <= settings.VESSEL_FRESHNESS_SECONDS else "yellow" if age_s < 3600 else "red"
            console.print(f"  Vessels: {vessel_count:,} — [{color}]last report {age_s:.0f}s ago[/{color}]")
        else:
            console.print("  Vessels: [red]No data yet[/red]")
    finally:
        db.close()


@app.command("query")
def query(
    min_lon: float = typer.Option(..., "--min-lon"),
    min_lat: float = typer.Option(..., "--min-lat"),
    max_lon: float = typer.Option(..., "--max-lon"),
    max_lat: float = typer.Option(..., "--max-lat"),
    limit: int = typer.Option(50, "--limit", help="Rows to print"),
):
    """List fresh vessels inside a bounding box (longitudes are wrapped into -180..180)."""
    from aislive.database import SessionLocal
    from aislive.exceptions import BoundingBoxError
    from aislive.modules.vessel_query import query_vessels_in_bbox

    db = SessionLocal()
    try:
        vessels = query_vessels_in_bbox(
            db, _wrap(min_lon), min_lat, _wrap(max_lon), max_lat,
        )
    except BoundingBoxError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(2)
    finally:
        db.close()

    table = Table(title=f"{len(vessels)} vessels")
    table.add_column("MMSI", style="cyan")
    table.add_column("Lat")
    table.add_column("Lon")
    table.add_column("Course")
    for v in vessels[:limit]:
        table.add_row(
            str(v["mmsi"]),
            f"{v['lat']:.5f}",
            f"{v['lon']:.5f}",
            f"{v['course']:.1f}" if v["course"] is not None else "[dim]unknown[/dim]",
        )
    console.print(table)


def _parse_duration(s: str) -> int:
    """Parse duration string (30s, 5m, 1h) to seconds."""
    s = s.strip().lower()
    if s == "0":
        return 0
    if s.endswith("s"):
        return int(s[:-1])
    if s.endswith("m"):
        return int(s[:-1]) * 60
    if s.endswith("h"):
        return int(s[:-1]) * 3600
    try:
        return int(s)
    except ValueError:
        return 300


def _wrap(lon: float) -> float:
    """Bring a map-derived longitude back into -180..180, leaving valid ones untouched."""
    from aislive.modules.normalize import normalize_longitude

    return lon if -180 <= lon <= 180 else normalize_longitude(lon)
