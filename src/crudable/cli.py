from __future__ import annotations

import json
import logging
from typing import Optional

import typer

from crudable import __version__
from crudable.config import get_settings
from crudable.exceptions import CrudableError

app = typer.Typer(add_completion=False, help="Crudable CLI")


@app.callback()
def _root() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_catalog(schema_path: Optional[str]):
    from crudable.meta_engine.schemas.loader import load_schema
    from crudable.meta_engine.services.catalog import TableCatalog

    try:
        schema = load_schema(schema_path)
    except CrudableError as exc:
        typer.echo(f"Error: {exc.message}", err=True)
        for error in exc.details.get("errors", []):
            typer.echo(f"  {error['loc']}: {error['msg']}", err=True)
        raise typer.Exit(1)
    return TableCatalog(schema)


@app.command()
def version() -> None:
    typer.echo(__version__)


@app.command("check-schema")
def check_schema(
    path: Optional[str] = typer.Argument(None, help="Schema file (default: CRUDABLE_SCHEMA_PATH)"),
) -> None:
    """
    Validate a schema document and summarize its tables and relations.
    """
    catalog = _load_catalog(path)
    typer.echo(f"Roles: {', '.join(catalog.schema.roles) or '-'}")
    for table in catalog.table_names():
        relations = catalog.relations_of(table)
        typer.echo(
            f"{table}: {len(catalog.fields_of(table))} fields, "
            f"{len(relations.many_to_one)} n:1, {len(relations.one_to_many)} 1:n"
        )
    typer.echo("Schema OK")


@app.command()
def tables(
    schema_path: Optional[str] = typer.Option(None, "--schema", help="Schema file"),
) -> None:
    """List declared tables with their display fields."""
    catalog = _load_catalog(schema_path)
    for table in catalog.table_names():
        typer.echo(f"{table}\t{', '.join(catalog.display_fields_of(table))}")


@app.command()
def permissions(
    roles: str = typer.Option("", help="Role string, e.g. '@member @premium'"),
    user_id: Optional[int] = typer.Option(None, help="Actor id (omit for anonymous)"),
    schema_path: Optional[str] = typer.Option(None, "--schema", help="Schema file"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON"),
) -> None:
    """
    Show the effective roles and table permissions of an actor.
    """
    from crudable.meta_engine.permission.roles import Actor, ActorRoleResolver, RoleGraph
    from crudable.meta_engine.services.meta_permission_service import MetaPermissionService

    catalog = _load_catalog(schema_path)
    actor = Actor(id=user_id, roles=roles)
    service = MetaPermissionService(catalog, ActorRoleResolver(RoleGraph(catalog.schema.roles)))
    effective = sorted(service.effective_roles(actor))
    table_permissions = service.all_permissions(actor)

    if as_json:
        typer.echo(json.dumps({"roles": effective, "permissions": table_permissions}, indent=2))
        return
    typer.echo(f"Effective roles: {', '.join(effective)}")
    for table, actions in table_permissions.items():
        typer.echo(f"{table}: {', '.join(actions)}")


@app.command("init-db")
def init_db_command(
    database_url: Optional[str] = typer.Option(None, help="Database URL (default: settings)"),
    schema_path: Optional[str] = typer.Option(None, "--schema", help="Schema file"),
) -> None:
    """
    Create missing tables for every table of the schema.
    """
    from crudable.database import Store, create_db_engine, init_db

    settings = get_settings()
    catalog = _load_catalog(schema_path)
    store = Store(create_db_engine(database_url, echo=settings.SQL_ECHO))
    created = init_db(store, catalog)
    typer.echo(f"Tables ready: {', '.join(created)}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
