#!/usr/bin/env python3
"""
solbridge Command Line Interface

Usage:
    solbridge keygen [--output <file>] [--force]
    solbridge lock <amount_sol> [<recipient>] [--wallet <file>]
    solbridge monitor [--once] [--signature <sig>]
    solbridge verify <token_file> [--offline] [--json]
    solbridge checkpoint [--output <file>]
    solbridge serve [--host <host>] [--port <port>]

Settings not given on the command line come from SOLBRIDGE_* environment
variables (see solbridge.config).
"""

import argparse
import json
import os
import sys

from .config import BridgeConfig
from .errors import BridgeError
from .logging_config import configure_logging


def load_json(path: str) -> dict:
    """Load JSON from file."""
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def save_json(data: dict, path: str):
    """Save JSON to file."""
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2)


def cmd_keygen(args, config: BridgeConfig):
    """Generate the minter key pair."""
    from .signing import MinterKeyPair

    output = args.output or config.minter_wallet
    if os.path.exists(output) and not args.force:
        print(f"✗ {output} already exists (use --force to overwrite)", file=sys.stderr)
        return 1

    pair = MinterKeyPair.generate()
    pair.save(output)
    print(f"Minter wallet saved to: {output}")
    print(f"Public key: {pair.public_key.hex()}")
    print(f"Address:    {pair.address}")
    print("\nLock SOL to this address to have the bridge mint tokens:", file=sys.stderr)
    print(f"  solbridge lock 0.1 {pair.address}", file=sys.stderr)
    return 0


def cmd_lock(args, config: BridgeConfig):
    """Lock SOL in the bridge program for a target-network recipient."""
    from .lock import LockClient, load_solana_keypair, sol_to_lamports
    from .rpc import SolanaRpcClient
    from .signing import MinterKeyPair

    recipient = args.recipient
    if not recipient:
        recipient = MinterKeyPair.load(config.minter_wallet).address

    rpc = SolanaRpcClient(config.rpc_url, timeout=config.rpc_timeout)
    client = LockClient(rpc, config.program_id, load_solana_keypair(args.wallet or config.solana_wallet))
    amount = sol_to_lamports(args.amount)

    print(f"Locking {args.amount} SOL ({amount} lamports) from {client.user}")
    print(f"Recipient: {recipient}")
    if args.no_wait:
        signature = client.lock(amount, recipient)
        print(f"Transaction: {signature}")
        return 0

    receipt = client.lock_and_confirm(amount, recipient, attempts=args.attempts)
    print(f"Transaction: {receipt.signature}")
    print(f"Explorer: https://explorer.solana.com/tx/{receipt.signature}?cluster={config.cluster}")
    if receipt.confirmed:
        print(f"\n✓ Confirmed ({receipt.confirmation_status})", file=sys.stderr)
        return 0
    print(f"\n! Not yet confirmed (last status: {receipt.confirmation_status})", file=sys.stderr)
    return 2


def cmd_monitor(args, config: BridgeConfig):
    """Watch the bridge program and mint tokens for lock events."""
    from .monitor import BridgeMonitor, ProcessStatus
    from .signing import MinterKeyPair

    minter = MinterKeyPair.load(config.minter_wallet)
    monitor = BridgeMonitor.from_config(config, minter)
    print(f"Minter address: {minter.address}", file=sys.stderr)

    if args.signature:
        result = monitor.process_signature(args.signature)
        monitor.guard.flush()
        print(json.dumps({
            "signature": result.signature,
            "status": result.status.value,
            "reason": result.reason,
            "assetId": result.asset_id,
            "locations": result.locations,
        }, indent=2))
        return 1 if result.status in (ProcessStatus.REJECTED, ProcessStatus.RETRY) else 0

    if args.once:
        monitor.poll_missed()
        results = monitor.drain()
        monitor.guard.flush()
        for r in results:
            print(f"{r.status.value:<18} {r.signature} {r.reason}")
        print(f"\nProcessed {len(results)} transaction(s)", file=sys.stderr)
        return 0

    try:
        monitor.run()
    except KeyboardInterrupt:
        print("\nShutting down bridge monitor...", file=sys.stderr)
    return 0


def cmd_verify(args, config: BridgeConfig):
    """Independently verify a minted token file."""
    from .rpc import SolanaRpcClient
    from .verifier import TokenVerifier

    artifact = load_json(args.token)
    rpc = None if args.offline else SolanaRpcClient(config.rpc_url, timeout=config.rpc_timeout)
    report = TokenVerifier(rpc=rpc, program_id=config.program_id).verify(artifact)

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print(report.render())
    return 0 if report.is_valid else 1


def cmd_checkpoint(args, config: BridgeConfig):
    """Export the latest finalized block as a trust checkpoint."""
    from .oracle import ConfirmationOracle
    from .rpc import SolanaRpcClient

    rpc = SolanaRpcClient(config.rpc_url, timeout=config.rpc_timeout)
    checkpoint = ConfirmationOracle(rpc, config.pending_threshold).get_latest_finalized_checkpoint()
    data = dict(checkpoint.to_dict(), rpcUrl=config.rpc_url, cluster=config.cluster)

    if args.output:
        save_json(data, args.output)
        print(f"Checkpoint saved to: {args.output}")
    else:
        print(json.dumps(data, indent=2))
    print(f"\nSOLBRIDGE_TRUSTED_CHECKPOINTS={checkpoint.block_hash}", file=sys.stderr)
    return 0


def cmd_serve(args, config: BridgeConfig):
    """Run the HTTP verification service."""
    import uvicorn

    from .api import create_app

    uvicorn.run(create_app(config), host=args.host, port=args.port, log_config=None)
    return 0


COMMANDS = {
    "keygen": cmd_keygen,
    "lock": cmd_lock,
    "monitor": cmd_monitor,
    "verify": cmd_verify,
    "checkpoint": cmd_checkpoint,
    "serve": cmd_serve,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="solbridge",
        description="Solana to Unicity lock/mint bridge",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  solbridge keygen                         Create minter-wallet.json
  solbridge lock 0.1                       Lock 0.1 SOL for the minter address
  solbridge monitor                        Watch and mint until interrupted
  solbridge verify unicity-token-1a2b3c4d.json
  solbridge checkpoint -o checkpoint.json
        """
    )
    parser.add_argument("--log-level", help="Override SOLBRIDGE_LOG_LEVEL")
    parser.add_argument("--text-logs", action="store_true", help="Plain text instead of JSON logs")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # keygen
    keygen_parser = subparsers.add_parser("keygen", help="Generate minter key pair")
    keygen_parser.add_argument("-o", "--output", help="Wallet file (default: SOLBRIDGE_MINTER_WALLET)")
    keygen_parser.add_argument("-f", "--force", action="store_true", help="Overwrite an existing wallet")

    # lock
    lock_parser = subparsers.add_parser("lock", help="Lock SOL in the bridge")
    lock_parser.add_argument("amount", type=float, help="Amount of SOL to lock (e.g. 0.1)")
    lock_parser.add_argument("recipient", nargs="?", help="Target-network address (default: minter address)")
    lock_parser.add_argument("-w", "--wallet", help="Solana keypair file (default: SOLBRIDGE_SOLANA_WALLET)")
    lock_parser.add_argument("--attempts", type=int, default=30, help="Confirmation polls before giving up")
    lock_parser.add_argument("--no-wait", action="store_true", help="Do not wait for confirmation")

    # monitor
    monitor_parser = subparsers.add_parser("monitor", help="Watch for lock events and mint")
    monitor_parser.add_argument("--once", action="store_true", help="Scan recent transactions once and exit")
    monitor_parser.add_argument("-s", "--signature", help="Process a single transaction and exit")

    # verify
    verify_parser = subparsers.add_parser("verify", help="Verify a minted token")
    verify_parser.add_argument("token", help="Token JSON file")
    verify_parser.add_argument("--offline", action="store_true", help="Skip origin-chain queries")
    verify_parser.add_argument("--json", action="store_true", help="Print the report as JSON")

    # checkpoint
    checkpoint_parser = subparsers.add_parser("checkpoint", help="Export latest finalized block")
    checkpoint_parser.add_argument("-o", "--output", help="Output file for checkpoint")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Run the verification API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command not in COMMANDS:
        parser.print_help()
        return 1

    config = BridgeConfig.from_env()
    if args.log_level:
        config.log_level = args.log_level
    problems = config.validate()
    if problems:
        for problem in problems:
            print(f"✗ configuration: {problem}", file=sys.stderr)
        return 1
    configure_logging(
        level=config.log_level,
        json_format=config.log_json and not args.text_logs,
        log_file=config.log_file,
    )

    try:
        return COMMANDS[args.command](args, config)
    except BridgeError as e:
        print(f"✗ {e.code}: {e}", file=sys.stderr)
        return 1
    except (OSError, ValueError) as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
