"""Operator commands: serving, schema setup, admin promotion and mail-outs."""

from typing import Annotated

import typer
import uvicorn

from fishstore.cart import CartStorage
from fishstore.config import StoreSettings
from fishstore.database import SqlAlchemyStoreDatabase
from fishstore.errors import StoreError
from fishstore.logging import configure_logging
from fishstore.service import build_service


def serve_command(
    host: Annotated[str, typer.Option("--host", "-h", help="Interface to bind")] = "127.0.0.1",
    port: Annotated[int, typer.Option("--port", "-p", help="Port to listen on")] = 8000,
    json_logs: Annotated[bool, typer.Option("--json-logs/--console-logs", help="Render logs as JSON")] = False,
) -> None:
    """Run the HTTP API with uvicorn."""
    configure_logging(use_json=json_logs)
    app = build_service(StoreSettings.from_env()).create_fastapi()
    uvicorn.run(app, host=host, port=port, log_config=None)


def init_db_command() -> None:
    """Create the database schema if it does not exist yet."""
    configure_logging()
    settings = StoreSettings.from_env()
    database = SqlAlchemyStoreDatabase(settings.database_url)
    database.dispose()
    typer.echo(f"Database ready at {settings.database_url}")


def promote_admin_command(
    email: Annotated[str, typer.Argument(help="Email of an existing user")],
    pickup_address: Annotated[str, typer.Option("--pickup-address", help="Where customers pick up orders")],
    delivery_fee: Annotated[
        float,
        typer.Option("--delivery-fee", min=0.0, help="Default home delivery fee in euros"),
    ] = 0.0,
) -> None:
    """Give a user the admin role and a fisherman profile."""
    configure_logging()
    service = build_service(StoreSettings.from_env())
    try:
        profile = service.accounts.promote_to_admin(email, pickup_address, delivery_fee)
    except StoreError as e:
        typer.echo(f"Error: {e.message}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"{email} is now an admin (profile {profile.id})")


def broadcast_command() -> None:
    """Send the new-catch email to every subscriber."""
    configure_logging()
    result = build_service(StoreSettings.from_env()).subscriptions.broadcast_new_catch()
    typer.echo(result.message)
    if result.failed:
        raise typer.Exit(code=1)


def cart_show_command(
    scope: Annotated[str, typer.Option("--scope", "-s", help="Client scope the cart belongs to")] = "default",
) -> None:
    """Print a stored cart."""
    cart = CartStorage(StoreSettings.from_env().cart_storage_dir).load(scope)
    if not cart.items:
        typer.echo("Cart is empty")
        return
    for item in cart.items:
        typer.echo(f"{item.display_name}  {item.quantity} kg x {item.price_per_kg:.2f} €/kg")
    typer.echo(f"Total {cart.total_price():.2f} € ({cart.item_count()} lines)")


def cart_clear_command(
    scope: Annotated[str, typer.Option("--scope", "-s", help="Client scope the cart belongs to")] = "default",
) -> None:
    """Forget a stored cart."""
    CartStorage(StoreSettings.from_env().cart_storage_dir).clear(scope)
    typer.echo(f"Cart '{scope}' cleared")
