"""Command-line interface for running adaptor swaps."""

import asyncio
import json
import logging
import sys

import click
import structlog
from pydantic import ValidationError
from structlog.stdlib import LoggerFactory

from . import __version__
from .config import config
from .database import RecordStore
from .errors import SwapError, UnsupportedTemplate
from .events import coerce_event
from .models import EventTemplate, SwapState
from .protocol import (
    Swap,
    SwapSession,
    accept,
    assemble_swap,
    find_proposal,
    generate_adaptors,
    propose,
    revoke,
    sign_given,
    sign_taken,
)
from .signers import LocalKeySigner
from .vault import FernetVault, SelfEncryptionVault

structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.dev.ConsoleRenderer(),
    ],
    context_class=dict,
    logger_factory=LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


def build_session() -> SwapSession:
    """Assemble the local party's signer and vault from configuration."""
    if config.private_key is None:
        raise click.ClickException("ADAPTOR_SWAP_PRIVATE_KEY is not set")
    signer = LocalKeySigner(config.private_key.get_secret_value())

    if config.vault == "fernet":
        if config.vault_key is None:
            raise click.ClickException("ADAPTOR_SWAP_VAULT_KEY is required for the fernet vault")
        vault = FernetVault(config.vault_key.get_secret_value())
    else:
        vault = SelfEncryptionVault(signer)

    return SwapSession(signer=signer, vault=vault)


def run(coro):
    """Run a coroutine, turning protocol errors into clean CLI failures."""
    try:
        return asyncio.run(coro)
    except SwapError as e:
        logger.error("Swap step failed", error=str(e), error_type=type(e).__name__)
        raise click.ClickException(f"{type(e).__name__}: {e}")


async def load_swap(store: RecordStore, proposal_id: str) -> Swap:
    records = await store.records_for(proposal_id)
    proposal = find_proposal(records, proposal_id)
    if proposal is None:
        raise click.ClickException(f"Proposal {proposal_id} has not been observed")
    return assemble_swap(proposal, records)


def emit(event) -> None:
    """Print a new record for the transport to broadcast."""
    click.echo(event.model_dump_json())


def read_template(path: str) -> EventTemplate:
    with click.open_file(path) as f:
        try:
            return EventTemplate.model_validate(json.load(f))
        except (json.JSONDecodeError, ValidationError) as e:
            raise click.BadParameter(f"{path} is not a message template: {e}")


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--database-url",
    default=None,
    help="Record log database (defaults to ADAPTOR_SWAP_DATABASE_URL)",
)
@click.pass_context
def cli(ctx, database_url):
    """Atomic swaps of signed log messages using adaptor signatures."""
    logging.basicConfig(level=config.log_level, stream=sys.stderr, format="%(message)s")
    ctx.obj = {"database_url": database_url or config.database_url}


async def _open_store(ctx) -> RecordStore:
    store = RecordStore(ctx.obj["database_url"])
    await store.init()
    return store


@cli.command()
@click.argument("files", nargs=-1, type=click.Path(allow_dash=True))
@click.pass_context
def ingest(ctx, files):
    """Add records received from relays (JSON objects or arrays) to the log."""

    async def go():
        store = await _open_store(ctx)
        added = skipped = 0
        try:
            for path in files or ("-",):
                with click.open_file(path) as f:
                    try:
                        payload = json.load(f)
                    except json.JSONDecodeError as e:
                        raise click.BadParameter(f"{path} is not JSON: {e}")
                for raw in payload if isinstance(payload, list) else [payload]:
                    try:
                        event = coerce_event(raw)
                    except SwapError as e:
                        logger.warning("Skipping malformed record", error=str(e))
                        skipped += 1
                        continue
                    if await store.add(event):
                        added += 1
        finally:
            await store.close()
        click.echo(f"Stored {added} new record(s), skipped {skipped}")

    run(go())


@cli.command("propose")
@click.option("--to", "counterparty", required=True, help="Counterparty hex pubkey")
@click.option("--give", "give_path", required=True, help="JSON template we will sign")
@click.option("--take", "take_path", required=True, help="JSON template they will sign")
@click.option("--description", default=None, help="Free-form note")
@click.pass_context
def propose_cmd(ctx, counterparty, give_path, take_path, description):
    """Propose swapping our GIVE message for their TAKE message."""
    session = build_session()
    give = read_template(give_path)
    take = read_template(take_path)

    async def go():
        store = await _open_store(ctx)
        try:
            proposal = propose(session, counterparty, give, take, description)
            await store.add(proposal.event)
        finally:
            await store.close()
        emit(proposal.event)

    run(go())


@cli.command("accept")
@click.argument("proposal_id")
@click.pass_context
def accept_cmd(ctx, proposal_id):
    """Counterparty: accept a proposal by disclosing our nonce."""
    session = build_session()

    async def go():
        store = await _open_store(ctx)
        try:
            swap = await load_swap(store, proposal_id)
            if swap.state != SwapState.NONCE_PENDING:
                raise click.ClickException(f"Swap is {swap.state.value}")
            event = accept(session, swap.proposal)
            await store.add(event)
        finally:
            await store.close()
        emit(event)

    run(go())


@cli.command()
@click.argument("proposal_id")
@click.pass_context
def adapt(ctx, proposal_id):
    """Proposer: publish the adaptor signature for our give message."""
    session = build_session()

    async def go():
        store = await _open_store(ctx)
        try:
            swap = await load_swap(store, proposal_id)
            if swap.state != SwapState.ADAPTOR_PENDING:
                raise click.ClickException(f"Swap is {swap.state.value}")
            event = generate_adaptors(session, swap.proposal, swap.nonce.event)
            await store.add(event)
        finally:
            await store.close()
        emit(event)

    run(go())


@cli.command()
@click.argument("proposal_id")
@click.pass_context
def give(ctx, proposal_id):
    """Counterparty: complete and publish the proposer's give message."""
    session = build_session()

    async def go():
        store = await _open_store(ctx)
        try:
            swap = await load_swap(store, proposal_id)
            if swap.state != SwapState.SETTLEMENT_A_PENDING:
                if swap.untrusted:
                    raise click.ClickException(
                        "Adaptor failed verification: the proposer cannot be trusted"
                    )
                raise click.ClickException(f"Swap is {swap.state.value}")
            event = sign_given(session, swap.proposal, swap.nonce.event, swap.adaptor.event)
            await store.add(event)
        finally:
            await store.close()
        emit(event)

    run(go())


@cli.command()
@click.argument("proposal_id")
@click.pass_context
def take(ctx, proposal_id):
    """Proposer: recover and publish the counterparty's take message."""
    session = build_session()

    async def go():
        store = await _open_store(ctx)
        try:
            swap = await load_swap(store, proposal_id)
            if swap.state != SwapState.SETTLEMENT_B_PENDING:
                raise click.ClickException(f"Swap is {swap.state.value}")
            event = sign_taken(
                session, swap.proposal, swap.nonce.event, swap.adaptor.event, swap.given
            )
            await store.add(event)
        finally:
            await store.close()
        emit(event)

    run(go())


@cli.command("revoke")
@click.argument("proposal_id")
@click.pass_context
def revoke_cmd(ctx, proposal_id):
    """Proposer: revoke a proposal nobody has accepted yet."""
    session = build_session()

    async def go():
        store = await _open_store(ctx)
        try:
            swap = await load_swap(store, proposal_id)
            if swap.state != SwapState.NONCE_PENDING:
                logger.warning(
                    "Revocation will have no effect", proposal_id=proposal_id, state=swap.state.value
                )
            event = revoke(session, swap.proposal)
            await store.add(event)
        finally:
            await store.close()
        emit(event)

    run(go())


@cli.command()
@click.argument("proposal_id")
@click.pass_context
def status(ctx, proposal_id):
    """Show the derived state of a swap."""

    async def go():
        store = await _open_store(ctx)
        try:
            swap = await load_swap(store, proposal_id)
        finally:
            await store.close()

        click.echo(f"Proposal: {swap.proposal.id}")
        click.echo(f"  State: {swap.state.value}")
        click.echo(f"  Proposer: {swap.proposal.proposer}")
        click.echo(f"  Counterparty: {swap.proposal.counterparty}")
        try:
            terms = swap.proposal.terms()
            click.echo(f"  Give message: {terms.give_id}")
            click.echo(f"  Take message: {terms.take_id}")
        except UnsupportedTemplate as e:
            click.echo(f"  Messages: {e}")
        if swap.proposal.content.description:
            click.echo(f"  Description: {swap.proposal.content.description}")
        if swap.untrusted:
            click.echo("  WARNING: an adaptor failed verification")
        for rejected in swap.rejected:
            click.echo(f"  Ignored {rejected.event_id or '<envelope>'}: {rejected.reason}")

    run(go())


@cli.command("list")
@click.option("--limit", default=10, help="Number of proposals to show")
@click.option("--mine", is_flag=True, help="Only proposals involving our key")
@click.pass_context
def list_swaps(ctx, limit, mine):
    """List recent proposals and their states."""

    async def go():
        pubkey = build_session().pubkey if mine else None
        store = await _open_store(ctx)
        try:
            proposals = await store.list_proposals(pubkey=pubkey, limit=limit)
            if not proposals:
                click.echo("No proposals found")
                return
            for event in proposals:
                swap = await load_swap(store, event.id)
                click.echo(f"{event.id}  {swap.state.value}")
        finally:
            await store.close()

    run(go())


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
