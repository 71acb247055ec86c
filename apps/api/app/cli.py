"""CLI tools for Sales Whisperer administration."""

import click
from sqlalchemy import func

from app.db.enums import Role
from app.db.models import User, UserInvite
from app.db.session import SessionLocal
from app.services import prompt_service


@click.group()
def cli():
    """Sales Whisperer CLI tools."""
    pass


@cli.command()
@click.option("--email", required=True, help="Admin email address")
def bootstrap_admin(email: str):
    """
    Create the initial admin invite.

    Sign-in is invite-only, so a fresh deployment needs one admin invite
    before anybody can log in. The admin then signs in with Google using
    that email and invites everyone else from the admin screen.

    Example:
        python -m app.cli bootstrap-admin --email "admin@example.com"
    """
    email = email.lower().strip()
    db = SessionLocal()
    try:
        if db.query(User).filter(func.lower(User.email) == email).first():
            click.echo(f"❌ User already exists: {email}")
            return

        existing_invite = (
            db.query(UserInvite)
            .filter(func.lower(UserInvite.email) == email, UserInvite.accepted_at.is_(None))
            .first()
        )
        if existing_invite:
            click.echo(f"❌ Pending invite already exists for {email}")
            return

        invite = UserInvite(
            email=email,
            role=Role.ADMIN.value,
            expires_at=None,  # Never expires
            invited_by_user_id=None,  # CLI bootstrap has no inviter
        )
        db.add(invite)
        db.commit()

        click.echo(f"✓ Created admin invite for {email}")
        click.echo(f"  ID: {invite.id}")
        click.echo("→ Admin should log in with Google using that email")

    except Exception as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
    finally:
        db.close()


@cli.command()
def seed_prompt():
    """
    Make sure an active analysis prompt exists.

    Example:
        python -m app.cli seed-prompt
    """
    db = SessionLocal()
    try:
        prompt = prompt_service.ensure_default_prompt(db)
        click.echo(f"✓ Active prompt: {prompt.name} (v{prompt.version_number})")
    except Exception as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
    finally:
        db.close()


@cli.command()
@click.option("--email", required=True, help="User email to revoke sessions for")
def revoke_sessions(email: str):
    """
    Revoke all sessions for a user by bumping their token_version.

    Example:
        python -m app.cli revoke-sessions --email "user@example.com"
    """
    db = SessionLocal()
    try:
        user = db.query(User).filter(func.lower(User.email) == email.lower()).first()
        if not user:
            click.echo(f"❌ User not found: {email}")
            return

        old_version = user.token_version
        user.token_version += 1
        db.commit()

        click.echo(f"✓ Revoked all sessions for {email}")
        click.echo(f"  Token version: {old_version} → {user.token_version}")

    except Exception as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
    finally:
        db.close()


if __name__ == "__main__":
    cli()
