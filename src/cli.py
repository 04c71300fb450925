#!/usr/bin/env python3
"""CLI entry point for the outfit try-on generator."""

import asyncio
import logging
import sys
from datetime import datetime
from itertools import zip_longest
from pathlib import Path

import click

from config import paths, settings
from errors import TryOnError
from gemini_client import GeminiClient
from image_codec import download_filename, load_image, to_png_bytes
from session import TryOnSession


_last_message: str | None = None


def cli_progress(event: str, data: dict) -> None:
    """Session listener that echoes progress messages to the terminal."""
    global _last_message
    if event == "progress":
        # Ticks repeat the current message; only print new ones
        message = data.get("message", "")
        if message and message != _last_message:
            _last_message = message
            click.echo(message)
    elif event == "result_replaced":
        click.echo(f"Result {data['index'] + 1} updated ({data['operation']})")


def parse_variation(value: str) -> tuple[int, str]:
    """Parse an INDEX:TEXT variation spec (1-based index)."""
    index, sep, text = value.partition(":")
    if not sep or not index.strip().isdigit() or int(index) < 1:
        raise click.BadParameter(f"expected INDEX:TEXT with a 1-based index, got {value!r}")
    return int(index) - 1, text


def write_results(session: TryOnSession, output: Path) -> list[Path]:
    """Write every result as a PNG into output."""
    output.mkdir(parents=True, exist_ok=True)
    written = []
    for idx, result in enumerate(session.results):
        path = output / download_filename(idx, result.upscaled)
        path.write_bytes(to_png_bytes(result.image))
        written.append(path)
    return written


async def run_session(
    session: TryOnSession,
    variations: list[tuple[int, str]],
    upscales: list[int],
) -> None:
    """Run one batch, then the requested follow-ups on it."""
    batch = await session.request_generate()
    click.echo(batch.message)
    for failure in batch.failures:
        click.echo(f"Warning: job {failure.job_index + 1} failed: {failure.reason}", err=True)

    for index, instruction in variations:
        try:
            await session.request_variation(index, instruction)
        except TryOnError as e:
            click.echo(f"Error: {e}", err=True)

    if upscales:
        outcomes = await asyncio.gather(
            *(session.request_upscale(index) for index in upscales),
            return_exceptions=True,
        )
        for outcome in outcomes:
            if isinstance(outcome, TryOnError):
                click.echo(f"Error: {outcome}", err=True)
            elif isinstance(outcome, BaseException):
                raise outcome


@click.command()
@click.option(
    '-m', '--model', 'models',
    multiple=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help='Model photo (PNG or JPEG); repeat for several models'
)
@click.option(
    '-i', '--outfit-image', 'outfit_images',
    multiple=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help='Outfit photo; the Nth image pairs with the Nth description'
)
@click.option(
    '-d', '--description', 'descriptions',
    multiple=True,
    help='Outfit description; the Nth description pairs with the Nth image'
)
@click.option(
    '-o', '--output',
    type=click.Path(file_okay=False, path_type=Path),
    help='Output directory (default: generated/{timestamp}/)'
)
@click.option(
    '--variation', 'variations',
    multiple=True,
    help='Vary a result after the batch, as INDEX:TEXT (1-based index)'
)
@click.option(
    '--upscale', 'upscales',
    multiple=True,
    type=click.IntRange(min=1),
    help='Upscale a result after the batch (1-based index)'
)
@click.option(
    '--api-key',
    default=None,
    help='API key for the image model (default: TRYON_API_KEY / GEMINI_API_KEY)'
)
@click.option(
    '--max-concurrency',
    type=click.IntRange(min=1),
    default=None,
    help='Cap on simultaneous remote calls (default: no cap)'
)
@click.option(
    '--serve',
    is_flag=True,
    help='Start the web UI server instead of running a batch'
)
@click.option(
    '--host',
    default='127.0.0.1',
    help='Host for the web server (default: 127.0.0.1)'
)
@click.option(
    '--port',
    default=8000,
    type=int,
    help='Port for the web server (default: 8000)'
)
@click.option(
    '-v', '--verbose',
    is_flag=True,
    help='Enable debug logging'
)
def main(
    models: tuple[Path, ...],
    outfit_images: tuple[Path, ...],
    descriptions: tuple[str, ...],
    output: Path | None,
    variations: tuple[str, ...],
    upscales: tuple[int, ...],
    api_key: str | None,
    max_concurrency: int | None,
    serve: bool,
    host: str,
    port: int,
    verbose: bool,
):
    """
    Dress model photos in new outfits using an AI image model.

    Every model photo is combined with every outfit, and all combinations
    are generated concurrently.

    Example:
        python cli.py -m model.jpg -d "a red summer dress"
        python cli.py -m a.png -m b.png -i jacket.png -d "" -d "denim overalls"

    Follow-ups on the batch just generated:
        python cli.py -m model.jpg -d "a tuxedo" --variation "1:a white tuxedo" --upscale 1
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if serve:
        import uvicorn
        from server.app import app
        click.echo(f"Starting web UI server on http://{host}:{port}")
        uvicorn.run(app, host=host, port=port)
        return

    if not models:
        click.echo("Error: at least one --model image is required", err=True)
        sys.exit(1)
    if not outfit_images and not descriptions:
        click.echo("Error: describe an outfit with --outfit-image and/or --description", err=True)
        sys.exit(1)

    try:
        parsed_variations = [parse_variation(v) for v in variations]
    except click.BadParameter as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)

    client = GeminiClient(api_key=api_key)
    session = TryOnSession(client, settings)
    if max_concurrency is not None:
        session.max_concurrency = max_concurrency
    session.add_listener(cli_progress)

    try:
        session.on_selection_changed([load_image(p) for p in models])
        for slot, (image_path, description) in enumerate(zip_longest(outfit_images, descriptions)):
            if slot > 0:
                session.add_outfit()
            if image_path is not None:
                session.on_outfit_selection_changed(slot, [load_image(image_path)])
            session.on_text_changed(slot, description or "")

        asyncio.run(run_session(session, parsed_variations, [u - 1 for u in upscales]))
    except TryOnError as e:
        click.echo(f"Error: {session.error or e}", err=True)
        sys.exit(1)

    if output is None:
        output = paths.generated_dir / datetime.now().strftime("%Y%m%d_%H%M%S")
    try:
        written = write_results(session, output)
    except TryOnError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"Saved {len(written)} image(s) to: {output}")


if __name__ == '__main__':
    main()
