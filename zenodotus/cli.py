from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional

import typer
import yaml

from zenodotus.errors import VaultError
from zenodotus.stages.bootstrap import initialize
from zenodotus.stages.ingest import IngestPipeline
from zenodotus.stages.lookup import list_by_prefix
from zenodotus.storage.manager import open_or_initialize
from zenodotus.storage.tag_store import TagStore
from zenodotus.utils.config import VaultSettings, load_settings
from zenodotus.utils.logging_config import setup_logging


app = typer.Typer(help="Content-addressed file vault.")


@contextmanager
def _exit_on_error():
    """Report a VaultError on stderr and exit with status 1."""
    try:
        yield
    except VaultError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)


def _require_storage(settings: VaultSettings) -> None:
    storage_dir = settings.layout().storage_dir
    if not storage_dir.is_dir():
        typer.echo(
            f"Error: {storage_dir} does not exist. Run 'init' to create a vault.",
            err=True,
        )
        raise typer.Exit(code=1)


@app.callback()
def main(
    ctx: typer.Context,
    index_file: Optional[Path] = typer.Option(
        None,
        "--file",
        "-f",
        help="Index file to use instead of the vault's own index.db.",
    ),
    vault_dir: Optional[Path] = typer.Option(
        None,
        "--vault",
        "-v",
        help="Vault directory. Defaults to ZENODOTUS_VAULT_DIR or the current directory.",
    ),
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        help="YAML file with settings (vault_dir, index_file, digest_algorithm, ...).",
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Log debug output."),
):
    """
    Ingest, tag and list files in a content-addressed vault.
    """
    try:
        settings = load_settings(
            config_file,
            index_file=index_file,
            vault_dir=vault_dir,
            log_level="DEBUG" if verbose else None,
        )
    except (ValueError, yaml.YAMLError) as e:
        typer.echo(f"Error: invalid settings: {e}", err=True)
        raise typer.Exit(code=1)

    setup_logging(settings.log_level, settings.log_file)
    ctx.obj = settings


@app.command()
def init(
    ctx: typer.Context,
    directory: Optional[Path] = typer.Argument(
        None, help="Empty directory to turn into a vault (default: the vault directory)."
    ),
):
    """
    Create index.db and the storage directory in an empty directory.
    """
    settings: VaultSettings = ctx.obj
    target = directory if directory is not None else settings.vault_dir

    with _exit_on_error():
        layout = initialize(target, settings)

    typer.echo(f"Initialized vault: {layout.index_path}")


@app.command()
def add(
    ctx: typer.Context,
    files: List[Path] = typer.Argument(..., help="Files to ingest."),
    name: Optional[str] = typer.Option(
        None,
        "--name",
        "-n",
        help="Logical name (single file only). Defaults to the file name.",
    ),
    inplace: bool = typer.Option(
        False,
        "--inplace",
        "-i",
        help="Copy content into storage and leave the source file in place.",
    ),
):
    """
    Digest files, index them, and move them into storage.
    """
    settings: VaultSettings = ctx.obj
    if name is not None and len(files) > 1:
        typer.echo("Error: --name can only be used with a single file.", err=True)
        raise typer.Exit(code=1)
    _require_storage(settings)

    layout = settings.layout()
    with _exit_on_error(), open_or_initialize(
        layout.index_path, settings.digest_algorithm
    ) as manager:
        pipeline = IngestPipeline(manager, layout, keep_source=inplace)
        results = pipeline.ingest_all((file, name) for file in files)

    failed = 0
    for result in results:
        if result.succeeded:
            typer.echo(f"{result.digest}  {result.name}")
        else:
            failed += 1
            typer.echo(f"Error: {result.source}: {result.error}", err=True)

    if failed:
        typer.echo(f"{failed} of {len(results)} file(s) failed.", err=True)
        raise typer.Exit(code=1)


@app.command()
def tag(
    ctx: typer.Context,
    prefix: str = typer.Argument(..., help="Digest or unambiguous digest prefix."),
    name: str = typer.Argument(..., help="Tag name."),
    value: Optional[str] = typer.Argument(None, help="Optional tag value."),
):
    """
    Attach a tag to the entry whose digest starts with PREFIX.
    """
    settings: VaultSettings = ctx.obj
    layout = settings.layout()

    with _exit_on_error(), open_or_initialize(
        layout.index_path, settings.digest_algorithm
    ) as manager:
        new_tag = TagStore(manager).add_tag(prefix, name, value)

    typer.echo(f"Tagged {new_tag.digest}")


@app.command()
def dump(
    ctx: typer.Context,
    prefix: str = typer.Argument("", help="Only list digests starting with this."),
):
    """
    List entries and their tags, ordered by digest.
    """
    settings: VaultSettings = ctx.obj
    layout = settings.layout()

    with _exit_on_error(), open_or_initialize(
        layout.index_path, settings.digest_algorithm
    ) as manager:
        for listed in list_by_prefix(manager, prefix):
            typer.echo(f"{listed.digest}  {listed.name}")
            for tag_name, value in listed.tags:
                if value is None:
                    typer.echo(f"    {tag_name}")
                else:
                    typer.echo(f"    {tag_name}={value}")


if __name__ == "__main__":
    app()
