"""
epochrewards/cli.py

Operator command line.

Commands:
    process  Compute and pin the pending distribution for a finished epoch
    run      Fund, sign and broadcast the pending distribution (resumes if started)
    recover  Resume a payout that was interrupted; never starts a new one
    status   Show the persisted payout progress for an epoch

Exit codes: 0 done, 1 failed, 130 interrupted (resumable).

Run with: python -m epochrewards.cli <command> [options]
"""

import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

import trio

from .archive import EpochArchive, PinataObjectStore
from .config import Settings
from .epoch import DistributionStatus
from .errors import DistributionCompleteError, EpochRewardsError, ResumeError
from .evm.client import ChainClient
from .payout import EpochStateStore, PayoutStateMachine, ThornodeClient, describe, load_or_create_wallet
from .process import EpochProcessor, previous_epoch
from .revenue import RevenueClient

logger = logging.getLogger("epochrewards.cli")

T = TypeVar("T")

# 128 + SIGINT; the payout can be resumed with `recover`
EXIT_INTERRUPTED = 130


def wallet_key_path(rfox_dir: Path, epoch_number: int) -> Path:
    return rfox_dir / f"hotwallet_epoch-{epoch_number}.key"


def make_archive(settings: Settings) -> EpochArchive:
    store = PinataObjectStore(
        api_key=settings.pinata_api_key,
        secret_api_key=settings.pinata_secret_api_key,
        gateway_url=settings.pinata_gateway_url,
        gateway_api_key=settings.pinata_gateway_api_key,
    )
    store.test_authentication()
    return EpochArchive(store)


async def run_until_signalled(fn: Callable[[], Awaitable[T]]) -> Optional[T]:
    """
    Run `fn`, cancelling it on SIGINT/SIGTERM. Returns None if cancelled.

    EpochRewardsError raised by `fn` is re-raised as is, outside the nursery.
    """
    result = []
    failed = []

    async with trio.open_nursery() as nursery:
        async def watch_signals():
            with trio.open_signal_receiver(signal.SIGINT, signal.SIGTERM) as signals:
                async for signum in signals:
                    logger.warning(f"Received {signal.Signals(signum).name}, shutting down")
                    nursery.cancel_scope.cancel()
                    return

        nursery.start_soon(watch_signals)
        try:
            result.append(await fn())
        except EpochRewardsError as e:
            failed.append(e)
        finally:
            nursery.cancel_scope.cancel()

    if failed:
        raise failed[0]
    return result[0] if result else None


# ============================================================================
# COMMANDS
# ============================================================================

def cmd_process(args, settings: Settings) -> int:
    settings.require("unchained_url")
    archive = make_archive(settings)
    processor = EpochProcessor(
        chain=ChainClient(settings.rpc_url),
        revenue=RevenueClient(settings.unchained_url),
        archive=archive,
        staking_contracts=settings.staking_contracts,
    )
    result = processor.process(archive.get_metadata(args.metadata))
    logger.info(f"Pending epoch hash: {result.epoch_hash}")
    logger.info(f"New metadata hash: {result.metadata_hash}")
    return 0


def cmd_payout(args, settings: Settings, recover: bool) -> int:
    archive = make_archive(settings)
    metadata = archive.get_metadata(args.metadata)
    epoch = previous_epoch(archive, metadata, args.epoch)
    if epoch.distribution_status is DistributionStatus.COMPLETE:
        raise DistributionCompleteError(f"The {epoch.month} rFOX reward distribution for Epoch #{epoch.number} is already complete")
    epoch_hash = metadata.ipfs_hash_by_epoch[epoch.number]

    store = EpochStateStore(settings.rfox_dir)
    if recover and not store.has_state(epoch.number):
        raise ResumeError(f"no payout in progress for epoch #{epoch.number} in {settings.rfox_dir}")

    wallet = load_or_create_wallet(wallet_key_path(settings.rfox_dir, epoch.number), create=not recover)
    machine = PayoutStateMachine(
        store=store,
        thornode=ThornodeClient(settings.thornode_url),
        signer=wallet,
        funding_source_address=settings.funding_source_address,
    )

    completed = trio.run(run_until_signalled, lambda: machine.run(epoch, epoch_hash))
    if completed is None:
        logger.warning("Payout interrupted, progress saved; run `recover` to continue")
        return EXIT_INTERRUPTED

    completed_hash = archive.add_epoch(completed)
    metadata_hash = archive.update_metadata_epoch(metadata, completed.number, completed_hash)
    logger.info(f"Completed epoch hash: {completed_hash}")
    logger.info(f"New metadata hash: {metadata_hash}")
    return 0


def cmd_status(args, settings: Settings) -> int:
    store = EpochStateStore(settings.rfox_dir)
    print(describe(store.load_state(args.epoch)))
    return 0


# ============================================================================
# ENTRY POINT
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="epochrewards", description="rFOX epoch reward processing and payout")
    parser.add_argument("--rfox-dir", type=Path, default=None, help="directory for payout state (default ~/rfox)")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("process", help="compute and pin a finished epoch")
    p.add_argument("--metadata", required=True, help="IPFS hash of the current metadata")

    for name, help_text in (("run", "run the pending distribution"), ("recover", "resume an interrupted distribution")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--metadata", required=True, help="IPFS hash of the current metadata")
        p.add_argument("--epoch", type=int, default=None, help="epoch number (default: the last processed)")

    p = sub.add_parser("status", help="show payout progress")
    p.add_argument("--epoch", type=int, required=True)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s [%(name)s] %(levelname)s: %(message)s'
    )

    try:
        settings = Settings.from_env()
        if args.rfox_dir is not None:
            settings.rfox_dir = args.rfox_dir.expanduser()
        settings.rfox_dir.mkdir(parents=True, exist_ok=True)

        if args.command == "process":
            return cmd_process(args, settings)
        if args.command in ("run", "recover"):
            return cmd_payout(args, settings, recover=args.command == "recover")
        return cmd_status(args, settings)
    except DistributionCompleteError as e:
        logger.info(str(e))
        return 0
    except EpochRewardsError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
