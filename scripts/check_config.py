#!/usr/bin/env python3
"""Validate a contact form document and print the rules the browser receives."""

import argparse
import json
from pathlib import Path

from formrelay.core.config import settings
from formrelay.core.errors import ConfigError
from formrelay.services.config_loader import load_contact_config


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "path",
        nargs="?",
        default=settings.CONTACT_CONFIG_PATH,
        help="contact document to check (default: CONTACT_CONFIG_PATH)",
    )
    parser.add_argument(
        "--client",
        action="store_true",
        help="print the full client view instead of the rules only",
    )
    args = parser.parse_args(argv)

    path = Path(args.path)
    try:
        config = load_contact_config(path)
    except ConfigError as exc:
        print(f"invalid contact config: {exc.detail}")
        return 1

    payload = config.client_view() if args.client else config.rules.export()
    print(json.dumps(payload, indent=2, ensure_ascii=False))

    if not config.mail.recipients:
        print(f"warning: {path} has no recipients in mail.to; every submission will fail")
        return 2

    print(f"config OK: {path} (mail mode: {config.mail.mode})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
