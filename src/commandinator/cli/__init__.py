"""CLI commands for Commandinator."""

import click

from ..bot import CommandinatorBot
from ..logging import get_logger, setup_logging
from ..signal import SignalTransport

logger = get_logger(__name__)


@click.group()
@click.pass_context
def cli(ctx):
    """Commandinator - chat command router."""
    ctx.ensure_object(dict)
    setup_logging()


@cli.command()
@click.option('--phone', envvar='SIGNAL_PHONE_NUMBER', required=True, help='Phone number')
@click.option('--host', envvar='SIGNAL_DAEMON_HOST', default='localhost', help='Signal daemon host')
@click.option('--port', envvar='SIGNAL_DAEMON_PORT', default=8080, type=int, help='Signal daemon port')
@click.option('--prefix', envvar='BOT_PREFIX', default='!', help='Command prefix')
@click.option('--owner', envvar='BOT_OWNER_ID', default=None, help='UUID of the bot owner')
@click.option('--replacer-open', envvar='REPLACER_OPEN', default='|', help='Opening replacer brace')
@click.option('--replacer-close', envvar='REPLACER_CLOSE', default='|', help='Closing replacer brace')
def daemon(phone, host, port, prefix, owner, replacer_open, replacer_close):
    """Run the bot daemon with real-time command handling."""
    click.echo("Starting Commandinator daemon...")
    click.echo(f"  Phone: {phone}")
    click.echo(f"  Signal Daemon: {host}:{port}")
    click.echo(f"  Prefix: {prefix}")
    click.echo(f"  Replacer braces: {replacer_open} {replacer_close}")
    click.echo(f"  Owner configured: {'yes' if owner else 'no'}")

    try:
        bot = CommandinatorBot(
            SignalTransport(phone, host, port),
            prefix=prefix,
            owner_id=owner,
            replacer_braces=(replacer_open, replacer_close),
        )

        click.echo("\n✓ Commandinator initialized")
        click.echo(f"✓ Commands: {prefix}help, {prefix}prefix")
        click.echo("✓ Press Ctrl+C to stop.\n")

        bot.run()

    except KeyboardInterrupt:
        click.echo("\n✓ Commandinator stopped.")
    except Exception as e:
        click.echo(f"\n✗ Error: {e}")
        logger.exception("Daemon error")
        raise SystemExit(1)


if __name__ == "__main__":
    cli()
