"""
Kiln Gallery — CLI Entry Point

Usage:
    kiln budget [--json]
    kiln compress IMAGE [--out-dir DIR] [--max-edge N] [--target-bytes N]
    kiln submit IMAGE --identifier NAME [--tags a,b] [--out-dir DIR]
    kiln metrics [--format prometheus|json]
"""

from __future__ import annotations

# Load .env file FIRST, before anything reads KILN_* variables
from pathlib import Path
from dotenv import load_dotenv

_env_file = Path.cwd() / ".env"
if _env_file.exists():
    load_dotenv(_env_file)

import json
from typing import Optional

import click

from .config.budget import CapacitySettings, load_settings, load_settings_file
from .gallery.submission import LocalUploader, SubmissionError, submit_piece
from .imaging.errors import ImagingError
from .imaging.models import JPEG, WEBP, CompressionRequest
from .imaging.pipeline import resize_to_budget
from .logging_config import setup_logging
from .observability.metrics import metrics


def _settings(ctx: click.Context) -> CapacitySettings:
    return ctx.obj["settings"]


@click.group()
@click.option(
    "--config", "config_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="YAML capacity settings (default: environment)",
)
@click.option("--log-level", default=None, help="DEBUG, INFO, WARNING, ERROR")
@click.pass_context
def cli(ctx: click.Context, config_file: Optional[Path], log_level: Optional[str]) -> None:
    """Kiln Gallery — budgeted images for the pottery catalog."""
    setup_logging(level=log_level)
    ctx.ensure_object(dict)
    try:
        ctx.obj["settings"] = load_settings_file(config_file) if config_file else load_settings()
    except (OSError, ValueError) as e:
        raise click.ClickException(f"Cannot load settings: {e}")


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Print settings and budgets as JSON")
@click.pass_context
def budget(ctx: click.Context, as_json: bool) -> None:
    """Show per-submission byte budgets derived from capacity."""
    s = _settings(ctx)
    if as_json:
        click.echo(json.dumps(s.to_dict(), indent=2))
        return

    click.echo()
    click.secho("📦 Capacity budget", bold=True)
    click.echo(f"  Library capacity:   {s.max_library_bytes:,} bytes")
    click.echo(f"  Max submissions:    {s.expected_max_submissions:,}")
    click.echo(f"  Safety factor:      {s.safety:.2f}")
    click.echo(f"  Per submission:     {s.per_submission_budget:,} bytes")
    click.echo()
    click.secho(f"  Main image:  {s.main_budget_bytes:>10,} bytes  ≤ {s.image_max_long_edge}px", fg="cyan")
    click.secho(f"  Thumbnail:   {s.thumb_budget_bytes:>10,} bytes  ≤ {s.thumb_max_long_edge}px", fg="cyan")
    click.echo()


@cli.command()
@click.argument("image", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--out-dir", "-o", type=click.Path(file_okay=False, path_type=Path),
              default=Path("."), help="Where to write the derivative")
@click.option("--thumb", is_flag=True, help="Use the thumbnail budget instead of the main one")
@click.option("--max-edge", type=click.IntRange(min=1), default=None,
              help="Override the long-edge bound in pixels")
@click.option("--target-bytes", type=click.IntRange(min=1), default=None,
              help="Override the byte budget")
@click.option("--codec", default=WEBP, show_default=True, help="Preferred codec")
@click.option("--fallback", default=JPEG, show_default=True, help="Fallback codec")
@click.pass_context
def compress(
    ctx: click.Context,
    image: Path,
    out_dir: Path,
    thumb: bool,
    max_edge: Optional[int],
    target_bytes: Optional[int],
    codec: str,
    fallback: str,
) -> None:
    """Write one budgeted derivative of IMAGE."""
    s = _settings(ctx)
    base = s.thumb_request() if thumb else s.main_request()
    edge = max_edge or base.max_width
    request = CompressionRequest(
        max_width=edge,
        max_height=edge,
        target_bytes=target_bytes or base.target_bytes,
        preferred_codec=codec,
        fallback_codec=fallback,
    )

    try:
        result = resize_to_budget(image.read_bytes(), request)
    except ImagingError as e:
        raise click.ClickException(str(e))

    out_dir.mkdir(parents=True, exist_ok=True)
    out_path = out_dir / result.filename(image.name)
    out_path.write_bytes(result.data)

    status = "✅" if result.within_budget else "⚠ over budget"
    click.echo(
        f"{out_path}  {result.width}x{result.height}  {result.codec}  "
        f"q={result.quality:.3f}  {result.size:,}/{request.target_bytes:,} bytes  {status}"
    )


@cli.command()
@click.argument("image", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--identifier", "-i", required=True, help="Piece identifier")
@click.option("--glaze", default="", help="Glaze name")
@click.option("--clay-body", default="", help="Clay body")
@click.option("--tags", default="", help="Comma-separated tags")
@click.option("--notes", default="", help="Freeform notes")
@click.option("--uid", default=None, help="Submitter id (default: anon)")
@click.option("--out-dir", "-o", type=click.Path(file_okay=False, path_type=Path),
              default=Path("uploads"), show_default=True, help="Local storage root")
@click.option("--base-url", default=None, help="Public URL prefix for stored files")
@click.pass_context
def submit(
    ctx: click.Context,
    image: Path,
    identifier: str,
    glaze: str,
    clay_body: str,
    tags: str,
    notes: str,
    uid: Optional[str],
    out_dir: Path,
    base_url: Optional[str],
) -> None:
    """Compress IMAGE into main + thumbnail, store them, print the record."""
    fields = {
        "identifier": identifier,
        "glaze": glaze,
        "clay_body": clay_body,
        "tags": tags,
        "notes": notes,
    }
    uploader = LocalUploader(out_dir, base_url=base_url)

    try:
        record = submit_piece(fields, image.read_bytes(), uploader, _settings(ctx), uid=uid)
    except (ImagingError, SubmissionError) as e:
        raise click.ClickException(str(e))

    click.echo(json.dumps(record, indent=2))


@cli.command("metrics")
@click.option("--format", "fmt", type=click.Choice(["prometheus", "json"]),
              default="prometheus", show_default=True)
def metrics_cmd(fmt: str) -> None:
    """
    Print pipeline metrics.

    The registry lives in memory, so a standalone run reports only what
    this invocation recorded.
    """
    if fmt == "json":
        click.echo(json.dumps(metrics.export_json(), indent=2))
    else:
        click.echo(metrics.export_prometheus())


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
