from __future__ import annotations

import io
import json
import logging
import shutil
from collections.abc import Callable
from pathlib import Path
from typing import Any, NoReturn, TypeVar

import typer

from modvault import (
    AppConfig,
    ConfiguredIdentityProvider,
    ItemMetadata,
    ItemRecord,
    ItemVault,
    Principal,
    PublicItemView,
    VaultError,
    load_config,
)
from modvault.config import StorageConfig
from modvault.identity import hash_password
from modvault.query import filter_items

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

T = TypeVar("T")

app = typer.Typer(help="modvault file repository CLI")
debug_app = typer.Typer(help="Debug commands")
app.add_typer(debug_app, name="debug")

_CONFIG_OPTION = typer.Option(
    Path("config/config.example.yaml"),
    "--config",
    help="Config file path.",
    exists=True,
    dir_okay=False,
    readable=True,
)
_USERNAME_OPTION = typer.Option(
    None,
    "--username",
    "-u",
    envvar="MODVAULT_USERNAME",
    help="Username to authenticate as. Anonymous when omitted.",
)
_PASSWORD_OPTION = typer.Option(
    None,
    "--password",
    "-p",
    envvar="MODVAULT_PASSWORD",
    help="Password for --username.",
)


@app.command()
def upload(
    file_path: Path = typer.Argument(
        ...,
        help="File to upload.",
        exists=True,
        dir_okay=False,
        readable=True,
    ),
    title: str | None = typer.Option(None, "--title", help="Display title. Defaults to the file name."),
    description: str = typer.Option("", "--description", help="Free-text description."),
    category: str = typer.Option("mods", "--category", help="Item category."),
    public: bool = typer.Option(False, "--public/--private", help="Visibility of the new item."),
    config_path: Path = _CONFIG_OPTION,
    username: str | None = _USERNAME_OPTION,
    password: str | None = _PASSWORD_OPTION,
) -> None:
    """Upload a new item."""
    config, vault = _open_vault(config_path)
    principal = _resolve_principal(config, username, password)
    metadata = ItemMetadata(
        title=title,
        description=description,
        category=category,
        is_public=public,
    )
    with file_path.open("rb") as stream:
        item = _call(vault.create_item, principal, metadata, stream, file_path.name)

    typer.echo(f"uploaded id={item.id} storage_name={item.storage_name} size={item.size_bytes}")


@app.command()
def replace(
    ref: str = typer.Argument(..., help="Item id or storage name."),
    file_path: Path = typer.Argument(
        ...,
        help="New file content.",
        exists=True,
        dir_okay=False,
        readable=True,
    ),
    config_path: Path = _CONFIG_OPTION,
    username: str | None = _USERNAME_OPTION,
    password: str | None = _PASSWORD_OPTION,
) -> None:
    """Replace the file behind an existing item."""
    config, vault = _open_vault(config_path)
    principal = _resolve_principal(config, username, password)
    with file_path.open("rb") as stream:
        item = _call(vault.replace_item_file, principal, ref, stream, file_path.name)

    typer.echo(f"replaced id={item.id} storage_name={item.storage_name} size={item.size_bytes}")


@app.command()
def delete(
    ref: str = typer.Argument(..., help="Item id or storage name."),
    config_path: Path = _CONFIG_OPTION,
    username: str | None = _USERNAME_OPTION,
    password: str | None = _PASSWORD_OPTION,
) -> None:
    """Delete an item and its file."""
    config, vault = _open_vault(config_path)
    principal = _resolve_principal(config, username, password)
    _call(vault.delete_item, principal, ref)
    typer.echo(f"deleted {ref}")


@app.command("list")
def list_items(
    show_all: bool = typer.Option(
        False,
        "--all",
        help="Include non-public items (requires login).",
    ),
    category: str | None = typer.Option(None, "--category", help="Only this category."),
    search: str | None = typer.Option(None, "--search", help="Match title or description."),
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of a table."),
    config_path: Path = _CONFIG_OPTION,
    username: str | None = _USERNAME_OPTION,
    password: str | None = _PASSWORD_OPTION,
) -> None:
    """List catalog items (public view unless --all)."""
    config, vault = _open_vault(config_path)
    views: list[ItemRecord] | list[PublicItemView]
    if show_all:
        principal = _resolve_principal(config, username, password)
        records = _call(vault.list_items, principal)
        views = filter_items(records, category=category, search=search)
    else:
        views = filter_items(vault.list_public_items(), category=category, search=search)

    if as_json:
        payload = [view.model_dump(mode="json") for view in views]
        typer.echo(json.dumps(payload, ensure_ascii=False, indent=2))
        return

    typer.echo(_render_item_table(views))
    typer.echo(f"items={len(views)}")


@app.command()
def show(
    ref: str = typer.Argument(..., help="Item id or storage name."),
    config_path: Path = _CONFIG_OPTION,
    username: str | None = _USERNAME_OPTION,
    password: str | None = _PASSWORD_OPTION,
) -> None:
    """Print the full record of one item."""
    config, vault = _open_vault(config_path)
    principal = _resolve_principal(config, username, password)
    item = _call(vault.get_item, principal, ref)
    typer.echo(json.dumps(item.model_dump(mode="json"), ensure_ascii=False, indent=2))


@app.command()
def download(
    ref: str = typer.Argument(..., help="Item id or storage name."),
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        help="Destination path. Defaults to the original file name in the current directory.",
    ),
    config_path: Path = _CONFIG_OPTION,
    username: str | None = _USERNAME_OPTION,
    password: str | None = _PASSWORD_OPTION,
) -> None:
    """Download the content of an item."""
    config, vault = _open_vault(config_path)
    principal = _resolve_principal(config, username, password)
    content = _call(vault.read_item_content, principal, ref)

    target = output or Path(Path(content.item.original_name).name)
    target.parent.mkdir(parents=True, exist_ok=True)
    with _call(content.open) as source, target.open("wb") as sink:
        shutil.copyfileobj(source, sink)

    typer.echo(f"downloaded id={content.item.id} bytes={content.item.size_bytes} output={target}")


@app.command()
def verify(config_path: Path = _CONFIG_OPTION) -> None:
    """Check that catalog entries and stored files match one to one."""
    _, vault = _open_vault(config_path)
    report = _call(vault.verify)

    for name in report.orphaned_files:
        typer.echo(f"orphaned_file {name}")
    for name in report.dangling_records:
        typer.echo(f"dangling_record {name}")
    for name in report.duplicate_storage_names:
        typer.echo(f"duplicate_storage_name {name}")

    typer.echo(
        "verify "
        f"ok={str(report.ok).lower()} "
        f"orphaned={len(report.orphaned_files)} "
        f"dangling={len(report.dangling_records)} "
        f"duplicates={len(report.duplicate_storage_names)}"
    )
    if not report.ok:
        raise typer.Exit(code=1)


@app.command()
def prune(
    config_path: Path = _CONFIG_OPTION,
    username: str | None = _USERNAME_OPTION,
    password: str | None = _PASSWORD_OPTION,
) -> None:
    """Remove stored files that no catalog entry references (admin only)."""
    config, vault = _open_vault(config_path)
    principal = _resolve_principal(config, username, password)
    removed = _call(vault.prune_orphans, principal)
    for name in removed:
        typer.echo(f"removed {name}")
    typer.echo(f"pruned={len(removed)}")


@app.command()
def recover(config_path: Path = _CONFIG_OPTION) -> None:
    """Clear staging leftovers from interrupted operations."""
    _, vault = _open_vault(config_path)
    typer.echo(f"recovered={vault.recover_staging()}")


@app.command()
def whoami(
    config_path: Path = _CONFIG_OPTION,
    username: str | None = _USERNAME_OPTION,
    password: str | None = _PASSWORD_OPTION,
) -> None:
    """Show the principal the given credentials resolve to."""
    config = _load_app_config(config_path)
    principal = _resolve_principal(config, username, password)
    if not principal.is_authenticated:
        typer.echo("Not logged in", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"username={principal.username} role={principal.role}")


@app.command("hash-password")
def hash_password_command(
    password: str = typer.Option(
        ...,
        "--password",
        prompt=True,
        hide_input=True,
        confirmation_prompt=True,
        help="Password to hash for a users[] config entry.",
    ),
) -> None:
    """Print a password hash for the users section of the config file."""
    try:
        typer.echo(hash_password(password))
    except ValueError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc


@debug_app.command("storage")
def debug_storage(
    data_dir: Path = typer.Option(
        Path("data/debug"),
        "--data-dir",
        help="Scratch directory for the storage smoke test.",
    ),
) -> None:
    """Run storage smoke test."""
    storage = StorageConfig(
        upload_dir=str(data_dir / "uploads"),
        staging_dir=str(data_dir / "staging"),
        catalog_file=str(data_dir / "items.json"),
    )
    vault = ItemVault.from_config(AppConfig(storage=storage))
    principal = Principal(username="debug", role="admin")

    item = _call(
        vault.create_item,
        principal,
        ItemMetadata(title="storage smoke test", is_public=True),
        io.BytesIO(b"smoke_ok"),
        "debug-storage.txt",
    )
    listed = [view.id for view in vault.list_public_items()]
    content = b"".join(vault.read_item_content(Principal.anonymous(), item.id).iter_bytes())
    _call(vault.delete_item, principal, item.id)
    report = vault.verify()

    if item.id not in listed or content != b"smoke_ok" or not report.ok:
        typer.echo("storage smoke test failed", err=True)
        raise typer.Exit(code=1)

    typer.echo("storage ok")


def _load_app_config(config_path: Path) -> AppConfig:
    try:
        return load_config(config_path)
    except ValueError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc


def _open_vault(config_path: Path) -> tuple[AppConfig, ItemVault]:
    config = _load_app_config(config_path)
    return config, ItemVault.from_config(config)


def _resolve_principal(
    config: AppConfig,
    username: str | None,
    password: str | None,
) -> Principal:
    if not username:
        return Principal.anonymous()

    provider = ConfiguredIdentityProvider(config.users)
    principal = provider.authenticate(username, password or "")
    if principal is None:
        typer.echo("error kind=Unauthorized status=401 Invalid credentials", err=True)
        raise typer.Exit(code=1)
    return principal


def _call(func: Callable[..., T], *args: Any) -> T:
    try:
        return func(*args)
    except VaultError as exc:
        _fail(exc)


def _fail(exc: VaultError) -> NoReturn:
    typer.echo(f"error kind={exc.kind} status={exc.status_code} {exc.detail}", err=True)
    raise typer.Exit(code=1) from exc


def _render_item_table(items: list[ItemRecord] | list[PublicItemView]) -> str:
    if not items:
        return "no items found"

    headers = ("id", "title", "category", "size", "storage_name")
    rows = [
        (
            item.id,
            _truncate(item.title, limit=40),
            item.category,
            str(item.size_bytes),
            item.storage_name,
        )
        for item in items
    ]

    widths = [
        max(len(headers[column]), *(len(row[column]) for row in rows))
        for column in range(len(headers))
    ]

    def _line(values: tuple[str, str, str, str, str]) -> str:
        return " | ".join(
            value.ljust(widths[index]) for index, value in enumerate(values)
        )

    divider = "-+-".join("-" * width for width in widths)
    body = [_line(headers), divider]
    body.extend(_line(row) for row in rows)
    return "\n".join(body)


def _truncate(text: str, *, limit: int) -> str:
    if len(text) <= limit:
        return text
    return f"{text[: limit - 3]}..."


def main() -> None:
    """CLI entrypoint."""
    app()


if __name__ == "__main__":
    main()
