"""CLI tools for InsureConnect administration."""

import click
from sqlalchemy import select

from insureconnect.core.exceptions import DomainError
from insureconnect.core.security import create_session_token
from insureconnect.db.enums import Role
from insureconnect.db.models import User
from insureconnect.db.session import SessionLocal
from insureconnect.services import token_service, user_service


@click.group()
def cli():
    """InsureConnect CLI tools."""
    pass


def _get_user_by_email(db, email: str) -> User:
    user = user_service.get_user_by_email(db, email)
    if not user:
        raise click.ClickException(f"User not found: {email}")
    return user


@cli.command()
@click.option("--email", required=True, help="Email address")
@click.option("--name", required=True, help="Display name")
@click.option(
    "--role",
    type=click.Choice([r.value for r in Role]),
    default=Role.CUSTOMER.value,
    show_default=True,
)
@click.option("--tokens", type=int, default=None, help="Signup grant (defaults to SIGNUP_TOKEN_GRANT)")
def create_user(email: str, name: str, role: str, tokens: int | None):
    """
    Create a user and credit the signup grant through the ledger.

    Example:
        insureconnect create-user --email admin@example.com --name Admin --role admin --tokens 0
    """
    db = SessionLocal()
    try:
        user = user_service.create_user(db, email=email, name=name, role=Role(role), grant_tokens=tokens)
        click.echo(f"✓ Created {user.role} {user.email}")
        click.echo(f"  ID: {user.id}")
        click.echo(f"  Balance: {user.token_balance}")
    except DomainError as e:
        raise click.ClickException(e.message)
    finally:
        db.close()


@cli.command()
@click.option("--email", required=True, help="User email to mint a session token for")
def issue_token(email: str):
    """Print a bearer token for a user (local testing, gateway debugging)."""
    db = SessionLocal()
    try:
        user = _get_user_by_email(db, email)
        click.echo(create_session_token(user.id, user.role, user.token_version))
    finally:
        db.close()


@cli.command()
@click.option("--email", required=True, help="User email to revoke sessions for")
def revoke_sessions(email: str):
    """
    Revoke all sessions for a user by bumping token_version.

    Live gateway connections fail their next authentication check.
    """
    db = SessionLocal()
    try:
        user = _get_user_by_email(db, email)
        new_version = user_service.revoke_sessions(db, user.id)
        click.echo(f"✓ Revoked sessions for {email} (token_version={new_version})")
    finally:
        db.close()


@cli.command()
@click.option("--email", default=None, help="Check a single user (default: everyone)")
def ledger_check(email: str | None):
    """Verify token_balance == SUM(token_transactions.amount) for every user."""
    db = SessionLocal()
    try:
        if email:
            users = [_get_user_by_email(db, email)]
        else:
            users = db.execute(select(User).order_by(User.created_at)).scalars().all()

        mismatches = 0
        for user in users:
            balance = token_service.get_balance(db, user.id)
            ledger = token_service.ledger_sum(db, user.id)
            if balance != ledger:
                mismatches += 1
                click.echo(f"✗ {user.email}: balance={balance} ledger={ledger}")

        if mismatches:
            raise click.ClickException(f"{mismatches} of {len(users)} users out of balance")
        click.echo(f"✓ {len(users)} users balanced")
    finally:
        db.close()


if __name__ == "__main__":
    cli()
