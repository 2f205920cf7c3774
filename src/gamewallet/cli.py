"""Operator command line for wallet keystores and Solana helpers.

Usage:
    gamewallet create --user 42 --network solana
    gamewallet import --user 42
    gamewallet address --user 42
    gamewallet verify --user 42
    gamewallet export-mnemonic --user 42
    gamewallet disconnect --user 42 --yes
    gamewallet pda --program <PROGRAM_ID> --seed config
    gamewallet discriminator deposit_spl

Passwords and secrets are always read with getpass, never from arguments.
"""

import argparse
import getpass
import logging
import sys
from typing import Optional

from gamewallet import __version__
from gamewallet.codec import solana
from gamewallet.config import get_settings
from gamewallet.errors import InputError, WalletError
from gamewallet.hdwallet.derivation import Network
from gamewallet.wallet.manager import WalletManager
from gamewallet.wallet.session import display_address

logger = logging.getLogger(__name__)


def _read_password(confirm: bool = False) -> str:
    password = getpass.getpass("Wallet password: ")
    if confirm and getpass.getpass("Repeat password: ") != password:
        raise InputError("Passwords do not match")
    return password


def _parse_seed(value: str) -> bytes:
    """hex:<hex> for raw bytes, otherwise UTF-8 text."""
    if value.startswith("hex:"):
        try:
            return bytes.fromhex(value[4:])
        except ValueError:
            raise InputError(f"Invalid hex seed: {value}")
    return value.encode("utf-8")


def cmd_create(manager: WalletManager, args) -> int:
    session, phrase = manager.create_wallet(
        args.user, _read_password(confirm=True), Network(args.network), args.words
    )
    print(f"Address: {session.address}")
    print("Seed phrase (write it down, it is shown only once):")
    print(f"  {phrase}")
    session.close()
    return 0


def cmd_import(manager: WalletManager, args) -> int:
    secret = getpass.getpass("Seed phrase or private key: ")
    session = manager.import_wallet(args.user, secret, _read_password(confirm=True), Network(args.network))
    print(f"Imported {session.network.value} wallet: {session.address}")
    session.close()
    return 0


def cmd_address(manager: WalletManager, args) -> int:
    address = manager.stored_address(args.user)
    if address is None:
        print(f"No wallet stored for user {args.user}")
        return 1
    print(f"{manager.stored_network(args.user).value}: {address}")
    return 0


def cmd_verify(manager: WalletManager, args) -> int:
    if manager.verify_password(args.user, _read_password()):
        print("Password OK")
        return 0
    print("Wrong password or no wallet stored")
    return 1


def cmd_export_mnemonic(manager: WalletManager, args) -> int:
    phrase = manager.export_mnemonic(args.user, _read_password())
    if phrase is None:
        print("Wallet was imported from a private key; no seed phrase stored")
        return 1
    print(phrase)
    return 0


def cmd_disconnect(manager: WalletManager, args) -> int:
    address = manager.stored_address(args.user)
    if address is None:
        print(f"No wallet stored for user {args.user}")
        return 1
    if not args.yes:
        answer = input(f"Delete keystore for {display_address(address)}? [y/N] ")
        if answer.strip().lower() != "y":
            print("Aborted")
            return 1
    manager.disconnect(args.user)
    print(f"Deleted wallet {display_address(address)}")
    return 0


def cmd_pda(args) -> int:
    seeds = [_parse_seed(s) for s in args.seed]
    address, bump = solana.find_program_address(seeds, args.program)
    print(f"{address} (bump {bump})")
    return 0


def cmd_discriminator(args) -> int:
    print(solana.discriminator(args.name).hex())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gamewallet", description="Game wallet keystore tool")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--env-file", type=str, help="Settings file (default: .env)")
    parser.add_argument("--keystore-dir", type=str, help="Override KEYSTORE_DIR")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create", help="Generate a new wallet")
    create.add_argument("--user", required=True, help="Game user id")
    create.add_argument("--network", choices=[n.value for n in Network], default=Network.EVM.value)
    create.add_argument("--words", type=int, choices=[12, 24], default=12, help="Seed phrase length")

    imp = sub.add_parser("import", help="Import a seed phrase or private key")
    imp.add_argument("--user", required=True, help="Game user id")
    imp.add_argument("--network", choices=[n.value for n in Network], default=Network.EVM.value)

    for name, help_text in (
        ("address", "Show the stored address"),
        ("verify", "Check a wallet password"),
        ("export-mnemonic", "Print the stored seed phrase"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("--user", required=True, help="Game user id")

    disconnect = sub.add_parser("disconnect", help="Delete the stored wallet")
    disconnect.add_argument("--user", required=True, help="Game user id")
    disconnect.add_argument("--yes", action="store_true", help="Do not ask for confirmation")

    pda = sub.add_parser("pda", help="Find a program derived address")
    pda.add_argument("--program", required=True, help="Program id (base58)")
    pda.add_argument("--seed", action="append", default=[], help="Seed as text or hex:<bytes>; repeatable")

    disc = sub.add_parser("discriminator", help="Anchor instruction discriminator")
    disc.add_argument("name", help="Instruction name, e.g. deposit_spl")

    return parser


WALLET_COMMANDS = {
    "create": cmd_create,
    "import": cmd_import,
    "address": cmd_address,
    "verify": cmd_verify,
    "export-mnemonic": cmd_export_mnemonic,
    "disconnect": cmd_disconnect,
}

CODEC_COMMANDS = {
    "pda": cmd_pda,
    "discriminator": cmd_discriminator,
}


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    settings = get_settings(args.env_file) if args.env_file else get_settings()
    logging.basicConfig(
        level=logging.DEBUG if (args.verbose or settings.debug) else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        if args.command in CODEC_COMMANDS:
            return CODEC_COMMANDS[args.command](args)

        if args.keystore_dir:
            settings = settings.model_copy(update={"keystore_dir": args.keystore_dir})
        return WALLET_COMMANDS[args.command](WalletManager(settings=settings), args)
    except WalletError as e:
        logger.debug(f"{args.command} failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
