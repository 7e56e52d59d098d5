"""Command line front-end.

Usage:
    shardwallet transfer --from one1... --to one1... --amount 1.5 --from-shard 0 --to-shard 0
    shardwallet staking delegate --delegator-addr one1... --validator-addr one1... --amount 100
    shardwallet staking collect-rewards --delegator-addr one1... --dry-run
"""

import argparse
import asyncio
import json
import logging
import sys
from decimal import Decimal, InvalidOperation
from typing import Optional

from shardwallet.chains import get_chain
from shardwallet.config import Settings, get_settings
from shardwallet.rpc.factory import BEACON_SHARD, handler_for_shard
from shardwallet.signing import HardwareDevice, SignerType, SigningError, get_signer
from shardwallet.transaction import staking
from shardwallet.transaction.controller import (
    Controller,
    ControllerBehavior,
    TransactionResult,
    TransactionStatus,
)

logger = logging.getLogger(__name__)


def _decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"not a number: {value}")


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--gas-price", type=_decimal, default=Decimal("1"), help="gas price to pay")
    parser.add_argument("--chain-id", default=None, help="what chain ID to target")
    parser.add_argument("--dry-run", action="store_true", default=None, help="do not send signed transaction")
    parser.add_argument(
        "--wait-for-confirm", type=int, default=None, metavar="SECONDS",
        help="only waits if non-zero value, in seconds",
    )
    parser.add_argument("--ledger", action="store_true", help="sign with the hardware device")
    parser.add_argument("--passphrase", default="", help="passphrase to unlock the sender's keystore")
    parser.add_argument("--no-pretty", action="store_true", help="compact JSON output")
    parser.add_argument("--node", default=None, help="node RPC endpoint")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="shardwallet", description="Create and send transactions")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    transfer = commands.add_parser("transfer", help="send a transaction across or within a shard")
    transfer.add_argument("--from", dest="from_address", required=True, help="sender's address")
    transfer.add_argument("--to", dest="to_address", required=True, help="destination address")
    transfer.add_argument("--amount", type=_decimal, required=True, help="amount")
    transfer.add_argument("--from-shard", type=int, required=True, help="source shard id")
    transfer.add_argument("--to-shard", type=int, required=True, help="target shard id")
    transfer.add_argument("--input-data", default="", help="base64 encoded input data")
    _add_common(transfer)

    stake = commands.add_parser("staking", help="send a staking transaction")
    directives = stake.add_subparsers(dest="directive", required=True)

    create = directives.add_parser("create-validator", help="create a new validator")
    _add_description(create)
    create.add_argument("--validator-addr", required=True)
    create.add_argument("--rate", type=_decimal, required=True, help="commission rate")
    create.add_argument("--max-rate", type=_decimal, required=True, help="commission max rate")
    create.add_argument("--max-change-rate", type=_decimal, required=True, help="commission max change")
    create.add_argument("--min-self-delegation", type=_decimal, required=True)
    create.add_argument("--max-total-delegation", type=_decimal, required=True)
    create.add_argument("--bls-pubkeys", required=True, help="comma separated BLS public keys")
    create.add_argument("--amount", type=_decimal, required=True, help="staking amount")
    _add_common(create)

    edit = directives.add_parser("edit-validator", help="edit a validator")
    _add_description(edit)
    edit.add_argument("--validator-addr", required=True)
    edit.add_argument("--rate", type=_decimal, default=None, help="commission rate")
    edit.add_argument("--min-self-delegation", type=_decimal, default=Decimal("0"))
    edit.add_argument("--max-total-delegation", type=_decimal, default=Decimal("0"))
    edit.add_argument("--remove-bls-key", default=None)
    edit.add_argument("--add-bls-key", default=None)
    _add_common(edit)

    for name, help_text in (("delegate", "delegating to a validator"), ("undelegate", "removing delegation")):
        sub = directives.add_parser(name, help=help_text)
        sub.add_argument("--delegator-addr", required=True)
        sub.add_argument("--validator-addr", required=True)
        sub.add_argument("--amount", type=_decimal, required=True, help="staking amount")
        _add_common(sub)

    collect = directives.add_parser("collect-rewards", help="collect token rewards")
    collect.add_argument("--delegator-addr", required=True)
    _add_common(collect)

    return parser


def _add_description(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--name", default="", help="validator's name")
    parser.add_argument("--identity", default="", help="validator's identity")
    parser.add_argument("--website", default="", help="validator's website")
    parser.add_argument("--security-contact", default="", help="validator's security contact")
    parser.add_argument("--details", default="", help="validator's details")


def _description(args: argparse.Namespace) -> staking.Description:
    return staking.Description(
        name=args.name,
        identity=args.identity,
        website=args.website,
        security_contact=args.security_contact,
        details=args.details,
    )


def directive_from_args(args: argparse.Namespace) -> tuple[str, staking.DirectiveBuilder]:
    """Return (sender address, directive builder) for a staking command."""
    if args.directive == "create-validator":
        return args.validator_addr, staking.create_validator(
            validator_address=args.validator_addr,
            description=_description(args),
            commission_rates=staking.CommissionRates(args.rate, args.max_rate, args.max_change_rate),
            min_self_delegation=args.min_self_delegation,
            max_total_delegation=args.max_total_delegation,
            bls_public_keys=[k.strip() for k in args.bls_pubkeys.split(",") if k.strip()],
            amount=args.amount,
        )
    if args.directive == "edit-validator":
        return args.validator_addr, staking.edit_validator(
            validator_address=args.validator_addr,
            description=_description(args),
            commission_rate=args.rate,
            min_self_delegation=args.min_self_delegation,
            max_total_delegation=args.max_total_delegation,
            slot_key_to_remove=args.remove_bls_key,
            slot_key_to_add=args.add_bls_key,
        )
    if args.directive == "delegate":
        return args.delegator_addr, staking.delegate(args.delegator_addr, args.validator_addr, args.amount)
    if args.directive == "undelegate":
        return args.delegator_addr, staking.undelegate(args.delegator_addr, args.validator_addr, args.amount)
    return args.delegator_addr, staking.collect_rewards(args.delegator_addr)


def render_result(controller: Controller, result: TransactionResult, pretty: bool = True) -> str:
    """Format a successful result for stdout."""
    indent = 2 if pretty else None

    if result.status == TransactionStatus.DRY_RUN:
        return controller.transaction_to_json(pretty=pretty)
    if result.status == TransactionStatus.CONFIRMED:
        return json.dumps(result.receipt, indent=indent)
    if result.status == TransactionStatus.PENDING:
        return json.dumps(
            {"transaction-receipt": result.receipt_hash, "status": result.status.value},
            indent=indent,
        )
    return json.dumps({"transaction-receipt": result.receipt_hash})


async def run(
    args: argparse.Namespace,
    settings: Settings,
    device: Optional[HardwareDevice] = None,
) -> int:
    """Execute a parsed command; returns the process exit code."""
    if args.node:
        settings = settings.model_copy(update={"node": args.node})

    signer_type = SignerType.HARDWARE if args.ledger else SignerType(settings.signer_backend)
    try:
        chain = get_chain(args.chain_id or settings.chain_id)
        behavior = ControllerBehavior.from_settings(
            settings,
            dry_run=args.dry_run,
            signing_impl=signer_type,
            confirmation_wait=args.wait_for_confirm,
        )
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    if args.command == "transfer":
        sender = args.from_address
        shard = args.from_shard
    else:
        sender, directive_builder = directive_from_args(args)
        shard = BEACON_SHARD

    try:
        signer = get_signer(sender, signer_type, passphrase=args.passphrase, device=device, settings=settings)
    except (SigningError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    try:
        handler = handler_for_shard(shard, settings)
        controller = Controller(handler, signer, chain, sender, behavior=behavior)
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    try:
        if args.command == "transfer":
            result = await controller.execute_transfer(
                args.to_address, args.input_data, args.amount, args.gas_price,
                args.from_shard, args.to_shard,
            )
        else:
            result = await controller.execute_staking(directive_builder, args.gas_price)
    finally:
        await handler.close()

    if result.error is not None:
        if result.receipt_hash is not None:
            print(json.dumps({"transaction-receipt": result.receipt_hash}))
        print(f"error: {result.error}", file=sys.stderr)
        return 1

    print(render_result(controller, result, pretty=not args.no_pretty))
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()

    log_level = logging.DEBUG if (args.verbose or settings.debug) else logging.WARNING
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    return asyncio.run(run(args, settings))
