"""Herp Keeper admin CLI.

Usage:
    herpkeeper add-admin-user -u admin                 # prompts for the password
    herpkeeper add-admin-user -u admin -p s3cret
    herpkeeper issue-token alice                       # access token for /ws testing
    herpkeeper issue-token alice --role admin --minutes 60
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import sys
from typing import Optional

import click
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from herpkeeper import __version__
from herpkeeper.auth.jwt import create_access_token
from herpkeeper.config import settings
from herpkeeper.db.engine import build_engine
from herpkeeper.db.models import Base
from herpkeeper.logging_config import configure_logging
from herpkeeper.services.profile_service import ProfileService


def _run(coro):
    """Run an async coroutine from synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


async def _create_admin(database_url: Optional[str], username: str, password: str):
    engine = build_engine(database_url)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        async with session_factory() as session:
            service = ProfileService(session)
            return await service.create(
                username=username,
                email=settings.admin_email,
                name="Admin User",
                password=password,
                role="admin",
                active=True,
            )
    finally:
        await engine.dispose()


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="herpkeeper")
def main():
    """Herp Keeper admin tools."""
    configure_logging(stream=sys.stderr)


@main.command("add-admin-user")
@click.option("--username", "-u", prompt="Username", help="Admin username")
@click.option(
    "--password", "-p", prompt="Password", hide_input=True, help="Admin password"
)
@click.option("--database-url", help="Override HERPKEEPER_DATABASE_URL")
def add_admin_user(username: str, password: str, database_url: Optional[str]):
    """Create an active admin profile."""
    if not username or not password:
        click.secho("Error: username and password are required", fg="red", err=True)
        sys.exit(1)

    try:
        profile = _run(_create_admin(database_url, username, password))
    except IntegrityError:
        click.secho(f"Error: user {username} already exists", fg="red", err=True)
        sys.exit(1)

    click.secho(f"User {profile.username} created", fg="green")


@main.command("issue-token")
@click.argument("username")
@click.option("--role", "-r", default="member", type=click.Choice(["member", "admin"]))
@click.option("--minutes", "-m", type=int, help="Lifetime in minutes")
def issue_token(username: str, role: str, minutes: Optional[int]):
    """Print an access token for USERNAME."""
    click.echo(create_access_token(username, role=role, expires_minutes=minutes))


if __name__ == "__main__":
    main()
