"""Main CLI application for fishstore."""

import typer

from fishstore.cli.commands import (
    broadcast_command,
    cart_clear_command,
    cart_show_command,
    init_db_command,
    promote_admin_command,
    serve_command,
)

app = typer.Typer(
    name="fishstore",
    help="Fishstore CLI for running and administering the storefront",
    no_args_is_help=True,
)

cart_app = typer.Typer(help="Inspect carts kept in local cart storage", no_args_is_help=True)


@app.callback(invoke_without_command=True)
def callback(ctx: typer.Context) -> None:
    """Fishstore CLI for running and administering the storefront."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())


# Register subcommands
app.command(name="serve", help="Run the HTTP API")(serve_command)
app.command(name="init-db", help="Create the database schema")(init_db_command)
app.command(name="promote-admin", help="Make a user an admin fisherman")(promote_admin_command)
app.command(name="broadcast", help="Email all subscribers about a new catch")(broadcast_command)

cart_app.command(name="show")(cart_show_command)
cart_app.command(name="clear")(cart_clear_command)
app.add_typer(cart_app, name="cart")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
