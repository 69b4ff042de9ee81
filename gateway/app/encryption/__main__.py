"""
Encrypt or decrypt configuration scalars from the command line.

The key is taken from CONFIG_ENCRYPTION_KEY, exactly as the gateway reads it.

Usage:
    # Produce an ENC: value to paste into config.yaml
    CONFIG_ENCRYPTION_KEY=... python -m app.encryption encrypt "my-client-secret"

    # Check what a stored value decrypts to
    CONFIG_ENCRYPTION_KEY=... python -m app.encryption decrypt "ENC:..."

    # Generate a fresh 32-byte key
    python -m app.encryption generate-key
"""

import argparse
import base64
import os
import sys
from typing import List, Optional

from app.exceptions import DecryptionFailedError

from .crypto import ENV_KEY_NAME, KEY_SIZE, decrypt, encrypt, get_key_input


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m app.encryption",
        description="Encrypt or decrypt configuration values",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    encrypt_parser = subparsers.add_parser("encrypt", help="Encrypt a plaintext value")
    encrypt_parser.add_argument("value", help="Plaintext value")

    decrypt_parser = subparsers.add_parser("decrypt", help="Decrypt an ENC: value")
    decrypt_parser.add_argument("value", help="Encrypted value")

    subparsers.add_parser("generate-key", help="Print a random base64 32-byte key")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "generate-key":
        print(base64.b64encode(os.urandom(KEY_SIZE)).decode("ascii"))
        return 0

    if get_key_input() is None:
        print(f"❌ {ENV_KEY_NAME} is not set; values would pass through unchanged", file=sys.stderr)
        return 1

    if args.command == "encrypt":
        print(encrypt(args.value))
        return 0

    try:
        print(decrypt(args.value))
    except DecryptionFailedError as e:
        print(f"❌ {e.message}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
