"""
EDI Bridge - Command Line Entry Point

Offline tools for operators: parse X12 files, build 997s, generate SSH keys
and compute AS2 MICs.
"""

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional

from .core.config import Config, load_config, set_config
from .core.exceptions import EdiBridgeException
from .core.structured_logging import configure_logging
from .transport.certificate_manager import CertificateManager, SshKeyType
from .transport.mdn import calculate_mic
from .transport.types import MicAlgorithm
from .x12.codec import DEFAULT_DELIMITERS, Delimiters, decode, encode, split_segments
from .x12.functional_ack import FunctionalAcknowledgmentGenerator
from .x12.registry import build_acknowledgment, parse_transaction_set

logger = logging.getLogger(__name__)


def _to_jsonable(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: _to_jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _to_jsonable(v) for k, v in value.items()}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


def _group_control_number(text: str) -> str:
    delimiters = Delimiters.from_isa(text) or DEFAULT_DELIMITERS
    for segment in split_segments(text, delimiters):
        if segment.segment_id == "GS":
            return segment.element(6) or "1"
    return "1"


def cmd_parse(args: argparse.Namespace) -> int:
    text = Path(args.file).read_text()
    output = []
    for transaction_set in decode(text):
        document, errors = parse_transaction_set(transaction_set)
        output.append(
            {
                "transaction_set": transaction_set.code,
                "control_number": transaction_set.control_number,
                "document": _to_jsonable(document),
                "issues": [issue.to_dict() for issue in errors],
            }
        )
    print(json.dumps(output, indent=2))
    return 0


def cmd_ack(args: argparse.Namespace) -> int:
    text = Path(args.file).read_text()
    group_control_number = _group_control_number(text)
    generator = FunctionalAcknowledgmentGenerator()

    for index, transaction_set in enumerate(decode(text), start=1):
        _, errors = parse_transaction_set(transaction_set)
        ack = build_acknowledgment(
            transaction_set,
            errors,
            group_control_number=group_control_number,
            control_number=str(index),
        )
        print(encode(generator.generate(ack), line_separator="\n"))
    return 0


def cmd_keygen(args: argparse.Namespace) -> int:
    manager = CertificateManager()
    key_pair = asyncio.run(
        manager.generate_ssh_key_pair(
            tenant_id=args.tenant,
            name=args.name,
            key_type=SshKeyType(args.algorithm),
            key_size=args.bits,
        )
    )
    print(key_pair.public_key)
    print(key_pair.fingerprint)
    return 0


def cmd_mic(args: argparse.Namespace) -> int:
    data = Path(args.file).read_bytes()
    print(f"{calculate_mic(data, args.algorithm)}, {args.algorithm}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="edi_bridge",
        description="EDI Bridge - X12 documents and AS2/SFTP transport tools",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level",
    )
    parser.add_argument("--config", type=str, help="Configuration file path")

    commands = parser.add_subparsers(dest="command", required=True)

    parse_cmd = commands.add_parser("parse", help="Parse an X12 file and print documents as JSON")
    parse_cmd.add_argument("file", help="X12 file")
    parse_cmd.set_defaults(handler=cmd_parse)

    ack_cmd = commands.add_parser("ack", help="Print a 997 for each transaction set in a file")
    ack_cmd.add_argument("file", help="X12 file")
    ack_cmd.set_defaults(handler=cmd_ack)

    keygen_cmd = commands.add_parser("keygen", help="Generate an SSH key pair")
    keygen_cmd.add_argument("--tenant", required=True, help="Owning tenant id")
    keygen_cmd.add_argument("--name", required=True, help="Key name (public key comment)")
    keygen_cmd.add_argument(
        "--algorithm", choices=[SshKeyType.RSA.value, SshKeyType.ED25519.value], default="rsa"
    )
    keygen_cmd.add_argument("--bits", type=int, default=None, help="RSA key size")
    keygen_cmd.set_defaults(handler=cmd_keygen)

    mic_cmd = commands.add_parser("mic", help="Compute the AS2 MIC of a file")
    mic_cmd.add_argument("file", help="Payload file")
    mic_cmd.add_argument(
        "--algorithm", choices=[a.value for a in MicAlgorithm], default=MicAlgorithm.SHA256.value
    )
    mic_cmd.set_defaults(handler=cmd_mic)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the EDI Bridge CLI."""
    args = build_parser().parse_args(argv)

    configure_logging(level=args.log_level, structured=False)

    try:
        if args.config:
            load_config(args.config)
        else:
            set_config(Config.load_from_env())
        return args.handler(args)
    except EdiBridgeException as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
    except OSError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
