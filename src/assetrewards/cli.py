"""
assetrewards/cli.py

Command line interface for the reward pipeline.

Run with: assetrewards --help

Every command prints its result as JSON. Errors are printed as JSON too
and exit with status 1.
"""

import json
import logging
import sys
from typing import Any, Awaitable, Callable

import click
import trio

from .config import RewardsConfig
from .errors import RewardsError
from .blockchain.rpc import NodeRpcClient, NodeRpcError
from .service import RewardsService
from .storage import FileBackend

logger = logging.getLogger("assetrewards.cli")


def build_service(config: RewardsConfig, dry_run: bool = False) -> RewardsService:
    """Wire a RewardsService to file storage and an Evrmore node."""
    from .blockchain.evrmore import EvrmoreNode

    rpc = NodeRpcClient(
        url=config.rpc_url,
        user=config.rpc_user or None,
        password=config.rpc_password or None,
        wallet=config.wallet_name or None,
        timeout=config.rpc_timeout,
    )
    node = EvrmoreNode(
        rpc,
        network=config.network,
        native_currency=config.native_currency,
        dry_run=dry_run,
    )
    return RewardsService(
        backend=FileBackend(config.storage_dir),
        snapshots=node,
        registry=node,
        chain=node,
        transfer=node,
        config=config,
    )


def _echo_json(data: Any, err: bool = False) -> None:
    click.echo(json.dumps(data, indent=2, default=str), err=err)


def _run(ctx: click.Context, operation: Callable[[RewardsService], Awaitable[Any]]) -> None:
    """Run one service operation inside trio and print its result."""
    config = ctx.obj["config"]
    factory = ctx.obj.get("service_factory", build_service)

    async def main():
        async with factory(config, ctx.obj.get("dry_run", False)) as service:
            return await operation(service)

    try:
        result = trio.run(main)
    except RewardsError as e:
        logger.debug(f"Command failed: {e}")
        _echo_json(e.to_dict(), err=True)
        ctx.exit(1)
    except NodeRpcError as e:
        _echo_json({"error": "node_rpc_error", "message": str(e), "code": e.code}, err=True)
        ctx.exit(1)
    else:
        _echo_json(result)


@click.group()
@click.option("--storage-dir", type=click.Path(file_okay=False), default=None,
              help="Directory for reward records")
@click.option("--rpc-url", default=None, help="Evrmore node RPC URL")
@click.option("--rpc-user", default=None, help="Node RPC username")
@click.option("--rpc-password", default=None, help="Node RPC password")
@click.option("--wallet", "wallet_name", default=None, help="Node wallet to fund rewards from")
@click.option("--network", type=click.Choice(["mainnet", "testnet", "regtest"]), default=None,
              help="Chain parameters for address validation")
@click.option("--batch-size", type=int, default=None, help="Maximum payments per transfer")
@click.option("--log-level", default=None,
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
              help="Logging level")
@click.option("--dry-run", is_flag=True, help="Log transfers instead of sending them")
@click.pass_context
def cli(ctx, storage_dir, rpc_url, rpc_user, rpc_password, wallet_name, network,
        batch_size, log_level, dry_run):
    """Schedule, compute and settle asset rewards."""
    ctx.ensure_object(dict)
    try:
        config = RewardsConfig.from_env(
            storage_dir=storage_dir,
            rpc_url=rpc_url,
            rpc_user=rpc_user,
            rpc_password=rpc_password,
            wallet_name=wallet_name,
            network=network,
            batch_size=batch_size,
            log_level=log_level.upper() if log_level else None,
        )
    except ValueError as e:
        raise click.BadParameter(str(e))

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        stream=sys.stderr,
    )
    ctx.obj["config"] = config
    ctx.obj["dry_run"] = dry_run


@cli.command()
@click.argument("amount")
@click.argument("funding_asset")
@click.argument("target_asset")
@click.argument("exception_addresses", required=False, default=None)
@click.pass_context
def schedule(ctx, amount, funding_asset, target_asset, exception_addresses):
    """Schedule AMOUNT of FUNDING_ASSET to holders of TARGET_ASSET.

    EXCEPTION_ADDRESSES is a comma-delimited list of addresses to leave out.
    """
    async def operation(service):
        reward_id, height = await service.schedule(
            amount, funding_asset, target_asset, exception_addresses
        )
        return {"reward_id": reward_id, "snapshot_height": height}

    _run(ctx, operation)


@cli.command()
@click.argument("reward_id")
@click.pass_context
def get(ctx, reward_id):
    """Show a scheduled reward."""
    async def operation(service):
        return (await service.get(reward_id)).to_dict()

    _run(ctx, operation)


@cli.command()
@click.argument("reward_id")
@click.pass_context
def cancel(ctx, reward_id):
    """Cancel a scheduled reward."""
    _run(ctx, lambda service: service.cancel(reward_id))


@cli.command()
@click.argument("reward_id")
@click.pass_context
def compute(ctx, reward_id):
    """Compute the payments of a reward from its snapshot."""
    _run(ctx, lambda service: service.compute(reward_id))


@cli.command()
@click.argument("reward_id")
@click.pass_context
def payouts(ctx, reward_id):
    """Show the computed payments of a reward."""
    _run(ctx, lambda service: service.get_payouts(reward_id))


@cli.command("cancel-payouts")
@click.argument("reward_id")
@click.pass_context
def cancel_payouts(ctx, reward_id):
    """Discard the computed payments of a reward."""
    _run(ctx, lambda service: service.cancel_payouts(reward_id))


@cli.command()
@click.argument("reward_id")
@click.pass_context
def settle(ctx, reward_id):
    """Send the pending payments of a reward."""
    async def operation(service):
        return (await service.settle(reward_id)).to_dict()

    _run(ctx, operation)


@cli.command()
@click.option("--height", type=int, default=None, help="Ledger height (default: current)")
@click.pass_context
def tick(ctx, height):
    """Compute payouts for rewards due at a height."""
    async def operation(service):
        current = height if height is not None else await service.chain.get_height()
        return {"height": current, "computed": await service.on_new_height(current)}

    _run(ctx, operation)


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
