# keyledger/cli.py
"""
keyledger command-line interface.

    keyledger register <public-key> --alg ed25519 [--expires-at T | --ttl S]
    keyledger rotate   <public-key> --alg ed25519 [--expires-at T | --ttl S]
    keyledger revoke   <index>
    keyledger history  [owner]
    keyledger active   [owner]

Connection settings come from the environment (see keyledger.config) and
can be overridden with --rpc-url / --contract / --chain-id / --signed.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from datetime import datetime, timezone
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version
from typing import Any, Callable, Dict, Optional, Sequence

from web3.exceptions import Web3Exception

from keyledger.config import ConfigError, LedgerConfig
from keyledger.registry import (
    KNOWN_ALGORITHMS,
    NO_PREVIOUS_INDEX,
    KeyEntry,
    KeyLedgerClient,
    LedgerError,
    load_history,
)

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_LEDGER_ERROR = 1
EXIT_NETWORK_ERROR = 2

ClientFactory = Callable[[LedgerConfig], Any]


def _version() -> str:
    try:
        return pkg_version("keyledger")
    except PackageNotFoundError:
        return "0.0.0+local"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="keyledger", description="Manage an on-chain public key history")
    parser.add_argument("--version", action="version", version=f"keyledger {_version()}")
    parser.add_argument("--rpc-url", default=None, help="RPC endpoint (env: KEYLEDGER_RPC_URL)")
    parser.add_argument("--contract", default=None, help="KeyManager address (env: KEYLEDGER_CONTRACT_ADDRESS)")
    parser.add_argument("--chain-id", type=int, default=None, help="Chain ID (default: auto-detect)")
    parser.add_argument("--signed", action="store_true", help="Contract requires register/rotate signatures")
    parser.add_argument("--log-level", default=None, help="Logging level (env: KEYLEDGER_LOG_LEVEL)")
    parser.add_argument("--json", action="store_true", help="Print machine-readable JSON")

    sub = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (("register", "Register a new key"), ("rotate", "Append a replacement key")):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("public_key", help="Public key (UTF-8 text, or hex with --hex)")
        cmd.add_argument("--hex", action="store_true", help="Interpret public_key as hex")
        cmd.add_argument(
            "--alg",
            default="ed25519",
            help=f"Algorithm label (e.g. {', '.join(KNOWN_ALGORITHMS)})",
        )
        expiry = cmd.add_mutually_exclusive_group()
        expiry.add_argument("--expires-at", type=int, default=None, help="Unix expiry time (0 = never)")
        expiry.add_argument("--ttl", type=int, default=None, help="Expire this many seconds from now")

    revoke = sub.add_parser("revoke", help="Revoke a history entry")
    revoke.add_argument("index", type=int, help="History index to revoke")

    history = sub.add_parser("history", help="Show key history")
    history.add_argument("owner", nargs="?", default=None, help="Owner address (default: own account)")

    active = sub.add_parser("active", help="Show the active key")
    active.add_argument("owner", nargs="?", default=None, help="Owner address (default: own account)")

    return parser


def _default_client(config: LedgerConfig) -> KeyLedgerClient:
    config.validate()
    return KeyLedgerClient(
        contract_address=config.contract_address,
        rpc_url=config.rpc_url,
        private_key=config.private_key,
        chain_id=config.chain_id,
        signed_variant=config.signed_variant,
        gas_limit=config.gas_limit,
    )


# =============================================================================
# Formatting
# =============================================================================

def _format_time(ts: int) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def _decode_key(public_key: bytes) -> str:
    try:
        return public_key.decode("utf-8")
    except UnicodeDecodeError:
        return "0x" + public_key.hex()


def _entry_dict(index: int, entry: KeyEntry, active: bool = False) -> Dict[str, Any]:
    return {
        "index": index,
        "public_key": _decode_key(entry.public_key),
        "alg": entry.alg,
        "registered_at": entry.registered_at,
        "expires_at": entry.expires_at,
        "revoked": entry.revoked,
        "active": active,
    }


def _entry_text(row: Dict[str, Any]) -> str:
    expires = "Never" if row["expires_at"] == 0 else _format_time(row["expires_at"])
    marker = "  [active]" if row["active"] else ""
    return (
        f"#{row['index']}{marker}\n"
        f"  public key: {row['public_key']}\n"
        f"  alg:        {row['alg']}\n"
        f"  registered: {_format_time(row['registered_at'])}\n"
        f"  expires:    {expires}\n"
        f"  revoked:    {'yes' if row['revoked'] else 'no'}"
    )


def _emit(args: argparse.Namespace, payload: Dict[str, Any], text: str) -> None:
    if args.json:
        print(json.dumps(payload, sort_keys=True))
    else:
        print(text)


# =============================================================================
# Commands
# =============================================================================

def _key_input(args: argparse.Namespace) -> tuple:
    if args.hex:
        raw = args.public_key[2:] if args.public_key.startswith("0x") else args.public_key
        public_key = bytes.fromhex(raw)
    else:
        public_key = args.public_key.encode("utf-8")

    if args.ttl is not None:
        if args.ttl <= 0:
            raise ValueError("--ttl must be positive")
        expires_at = int(time.time()) + args.ttl
    else:
        expires_at = args.expires_at or 0
    return public_key, expires_at


def _owner(args: argparse.Namespace, client: Any) -> str:
    owner = args.owner or client.account_address
    if not owner:
        raise ValueError("owner address required (no private key configured)")
    return owner


def _cmd_register(args: argparse.Namespace, client: Any) -> int:
    public_key, expires_at = _key_input(args)
    index = client.register_key(public_key, args.alg, expires_at)
    _emit(args, {"status": "registered", "index": index}, f"Key registered at index {index}")
    return EXIT_SUCCESS


def _cmd_rotate(args: argparse.Namespace, client: Any) -> int:
    public_key, expires_at = _key_input(args)
    old_index, new_index = client.rotate_key(public_key, args.alg, expires_at)
    previous = None if old_index == NO_PREVIOUS_INDEX else old_index
    _emit(
        args,
        {"status": "rotated", "old_index": previous, "new_index": new_index},
        f"Key rotated: {'none' if previous is None else previous} -> {new_index}",
    )
    return EXIT_SUCCESS


def _cmd_revoke(args: argparse.Namespace, client: Any) -> int:
    client.revoke_key(args.index)
    _emit(args, {"status": "revoked", "index": args.index}, f"Key {args.index} revoked")
    return EXIT_SUCCESS


def _cmd_history(args: argparse.Namespace, client: Any) -> int:
    owner = _owner(args, client)
    rows = [_entry_dict(r.index, r.entry, r.active) for r in load_history(client, owner)]
    text = "\n".join(_entry_text(r) for r in rows) if rows else "No keys found."
    _emit(args, {"owner": owner, "history": rows}, text)
    return EXIT_SUCCESS


def _cmd_active(args: argparse.Namespace, client: Any) -> int:
    owner = _owner(args, client)
    active = client.get_active_key(owner)
    if not active.found:
        _emit(args, {"owner": owner, "found": False}, "No active key.")
        return EXIT_SUCCESS
    row = _entry_dict(active.index, active.entry, active=True)
    _emit(args, {"owner": owner, "found": True, "key": row}, _entry_text(row))
    return EXIT_SUCCESS


COMMANDS = {
    "register": _cmd_register,
    "rotate": _cmd_rotate,
    "revoke": _cmd_revoke,
    "history": _cmd_history,
    "active": _cmd_active,
}


def main(
    argv: Optional[Sequence[str]] = None,
    client_factory: Optional[ClientFactory] = None,
    environ: Optional[Dict[str, str]] = None,
) -> int:
    args = _build_parser().parse_args(argv)

    try:
        config = LedgerConfig.from_env(environ).override(
            rpc_url=args.rpc_url,
            contract_address=args.contract,
            chain_id=args.chain_id,
            signed_variant=True if args.signed else None,
            log_level=args.log_level.upper() if args.log_level else None,
        )
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_LEDGER_ERROR

    try:
        logging.basicConfig(
            level=config.log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        client = (client_factory or _default_client)(config)
        return COMMANDS[args.command](args, client)
    except (ConfigError, LedgerError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_LEDGER_ERROR
    except (OSError, Web3Exception) as e:
        logger.debug("Network failure", exc_info=True)
        print(f"Network error: {e}", file=sys.stderr)
        return EXIT_NETWORK_ERROR


if __name__ == "__main__":
    sys.exit(main())
