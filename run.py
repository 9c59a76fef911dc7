#!/usr/bin/env python3
"""
BGuard Suite - Threat Modeling and Security Review Platform

Main entry point for the application.
"""

import click
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


@click.group()
@click.version_option(version='1.0.0', prog_name='BGuard Suite')
def cli():
    """BGuard Suite - Threat Modeling and Security Review Platform"""
    pass


@cli.command()
@click.option('--host', default='127.0.0.1', help='Host to bind to')
@click.option('--port', default=5000, help='Port to bind to')
@click.option('--debug', is_flag=True, help='Enable debug mode')
def web(host, port, debug):
    """Start the API server."""
    from bguard import create_app

    config = 'development' if debug else 'production'
    app = create_app(config)

    click.echo(f"""
    ╔═══════════════════════════════════════════════════════════╗
    ║   BGuard Suite v1.0.0                                     ║
    ║   Threat Modeling and Security Review Platform            ║
    ╚═══════════════════════════════════════════════════════════╝

    Starting API server at http://{host}:{port}/api/v1
    Press Ctrl+C to stop
    """)

    app.run(host=host, port=port, debug=debug)


@cli.command()
def initdb():
    """Initialize the database and seed system tags."""
    from bguard import create_app, db
    from bguard.models import Tag

    app = create_app('development')

    with app.app_context():
        db.create_all()
        created = Tag.seed_system_tags()
        click.echo(f"Database initialized successfully! ({created} system tags created)")


@cli.command('seed-tags')
def seed_tags():
    """Create any missing system tags."""
    from bguard import create_app
    from bguard.models import Tag

    app = create_app('development')

    with app.app_context():
        created = Tag.seed_system_tags()
        click.echo(f"{created} system tags created")


@cli.command()
@click.option('--email', prompt=True, help='Admin email')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Admin password')
@click.option('--first-name', default=None, help='First name')
@click.option('--last-name', default=None, help='Last name')
def createadmin(email, password, first_name, last_name):
    """Create a platform admin user."""
    from bguard import create_app, db
    from bguard.models import User, UserRole

    app = create_app('development')

    with app.app_context():
        try:
            user = User(
                email=email,
                password=password,
                first_name=first_name,
                last_name=last_name,
                role=UserRole.ADMIN,
            )
            db.session.add(user)
            db.session.commit()
            click.echo(f"Admin user '{user.email}' created successfully!")
        except ValueError as e:
            click.echo(f"Error: {e}", err=True)
        except Exception as e:
            db.session.rollback()
            click.echo(f"Error creating user: {e}", err=True)


@cli.command('cleanup-keys')
def cleanup_keys():
    """Deactivate expired API keys."""
    from bguard import create_app
    from bguard.security.api_keys import cleanup_expired_keys

    app = create_app('development')

    with app.app_context():
        count = cleanup_expired_keys()
        click.echo(f"{count} expired API keys deactivated")


if __name__ == '__main__':
    cli()
