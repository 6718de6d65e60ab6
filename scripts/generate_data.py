"""
Synthetic telemetry generator for SIPOMA Store.

Implements deterministic pseudo-random finish-mill readings and plant alerts,
CSV emission, and batched loading through ``TableAccessor.bulk_insert``.
"""

from __future__ import annotations

import asyncio
import csv
import json
import random
import sys
import time
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Iterator, List

import typer

from sipoma_store.config import get_settings
from sipoma_store.infrastructure.client import RemoteClient
from sipoma_store.tables.collections import alerts, finish_mill_logs
from sipoma_store.utils.logging import configure_logging
from sipoma_store.utils.retry import retry_network

app = typer.Typer(help="Generate synthetic plant telemetry and load it into the backend.")

MILLS = ["FM-1", "FM-2", "FM-3", "FM-4"]
SHIFTS = ["pagi", "sore", "malam"]
ALERT_TYPES = ["equipment", "quality", "safety", "production", "maintenance", "weather"]
SEVERITIES = ["low", "medium", "high", "critical"]

FACTORY_LOG_COLUMNS = [
    "mill_id",
    "timestamp",
    "shift",
    "production_rate",
    "energy_consumption",
    "parameters",
]


def _shift_for(hour: int) -> str:
    if 6 <= hour < 14:
        return SHIFTS[0]
    if 14 <= hour < 22:
        return SHIFTS[1]
    return SHIFTS[2]


def generate_factory_logs(rows: int, seed: int, start: datetime | None = None) -> Iterator[Dict[str, Any]]:
    """Hourly readings, round-robin across mills, one hour apart per mill."""
    rng = random.Random(seed)
    origin = start or datetime(2025, 1, 1, tzinfo=UTC)
    for i in range(rows):
        mill = MILLS[i % len(MILLS)]
        ts = origin + timedelta(hours=i // len(MILLS))
        production = round(rng.uniform(80, 140), 2)
        yield {
            "mill_id": mill,
            "timestamp": ts.isoformat(),
            "shift": _shift_for(ts.hour),
            "production_rate": production,
            "energy_consumption": round(production * rng.uniform(28, 36), 2),
            "parameters": {
                "blaine": round(rng.uniform(3400, 3900), 1),
                "residue_45um": round(rng.uniform(8, 14), 2),
                "mill_temp": round(rng.uniform(95, 120), 1),
            },
        }


def generate_alerts(rows: int, seed: int) -> Iterator[Dict[str, Any]]:
    rng = random.Random(seed)
    now = datetime.now(UTC)
    for _ in range(rows):
        alert_type = rng.choice(ALERT_TYPES)
        mill = rng.choice(MILLS)
        yield {
            "type": alert_type,
            "severity": rng.choice(SEVERITIES),
            "title": f"{alert_type.title()} event on {mill}",
            "message": f"Threshold exceeded on {mill}",
            "source": mill,
            "timestamp": (now - timedelta(minutes=rng.randint(0, 24 * 60))).isoformat(),
            "acknowledged": False,
            "resolved": rng.random() < 0.3,
        }


def _generate_rows_csv(csv_path: Path, rows: int, batch_size: int, seed: int) -> None:
    with csv_path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(FACTORY_LOG_COLUMNS)

        buffer: list[list[str]] = []
        for row in generate_factory_logs(rows, seed):
            buffer.append(
                [
                    row["mill_id"],
                    row["timestamp"],
                    row["shift"],
                    f"{row['production_rate']:.2f}",
                    f"{row['energy_consumption']:.2f}",
                    json.dumps(row["parameters"]),
                ]
            )
            if len(buffer) >= batch_size:
                writer.writerows(buffer)
                buffer.clear()
        if buffer:
            writer.writerows(buffer)


def _batches(rows: Iterator[Dict[str, Any]], batch_size: int) -> Iterator[List[Dict[str, Any]]]:
    batch: List[Dict[str, Any]] = []
    for row in rows:
        batch.append(row)
        if len(batch) >= batch_size:
            yield batch
            batch = []
    if batch:
        yield batch


async def _load(client: RemoteClient, rows: int, alert_rows: int, batch_size: int, seed: int) -> int:
    """Insert generated rows batch by batch; stops at the first failed batch."""
    loaded = 0
    plan = [
        (finish_mill_logs(client), generate_factory_logs(rows, seed)),
        (alerts(client), generate_alerts(alert_rows, seed)),
    ]
    for accessor, generated in plan:
        for batch in _batches(generated, batch_size):
            result = await retry_network(lambda: accessor.bulk_insert(batch))
            if not result.ok:
                typer.echo(
                    f"Insert into {accessor.name} failed after {loaded} rows: {result.error}",
                    err=True,
                )
                raise typer.Exit(code=1)
            loaded += len(result.data)
    return loaded


@app.command()
def main(
    rows: int = typer.Option(
        1_000,
        "--rows",
        "-r",
        help="Number of finish-mill readings to generate.",
    ),
    alert_rows: int = typer.Option(
        50,
        "--alerts",
        help="Number of alerts to generate.",
    ),
    batch_size: int = typer.Option(
        500,
        "--batch-size",
        "-b",
        help="Rows per insert request (and per CSV write).",
    ),
    seed: int = typer.Option(
        42,
        "--seed",
        help="Deterministic RNG seed.",
    ),
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        help="Optional CSV output path for the finish-mill readings.",
    ),
    no_load: bool = typer.Option(
        False,
        "--no-load",
        help="Only generate CSV; skip inserting into the backend.",
    ),
) -> None:
    """
    Generate synthetic telemetry and optionally insert it into the backend.
    """
    start = time.perf_counter()
    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        typer.echo(f"Generating {rows:,} readings -> {output} (batch={batch_size}, seed={seed})")
        _generate_rows_csv(output, rows=rows, batch_size=batch_size, seed=seed)

    if no_load:
        typer.echo("Skipping load (no-load flag set).")
        return

    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)

    async def _run() -> int:
        async with RemoteClient(settings) as client:
            return await _load(client, rows, alert_rows, batch_size, seed)

    loaded = asyncio.run(_run())
    duration = time.perf_counter() - start
    typer.echo(f"Inserted {loaded:,} rows in {duration:.2f}s ({loaded / duration:,.0f} rows/s).")


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
