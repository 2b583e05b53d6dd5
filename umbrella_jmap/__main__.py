"""Entry point for the JMAP connector package.

Usage::

    python -m umbrella_jmap poll      # poll for new mail, publish to Kafka
    python -m umbrella_jmap session   # fetch and print the JMAP session
"""

from __future__ import annotations

import asyncio
import json
import sys


async def _print_session() -> None:
    from .client import open_client
    from .config import JmapConfig

    async with open_client(JmapConfig()) as client:
        session = await client.session()
        summary = {
            "username": session.username,
            "apiUrl": session.api_url,
            "primaryAccountId": session.primary_account_id(),
            "accounts": {k: v.name for k, v in session.accounts.items()},
            "capabilities": sorted(session.capabilities),
        }
    print(json.dumps(summary, indent=2))


def main() -> None:
    if len(sys.argv) < 2 or sys.argv[1] not in ("poll", "session"):
        print("Usage: python -m umbrella_jmap <poll|session>", file=sys.stderr)
        sys.exit(1)

    mode = sys.argv[1]

    if mode == "poll":
        from .config import ConnectorConfig
        from .connector import JmapConnector

        connector = JmapConnector(ConnectorConfig())
        asyncio.run(connector.run())

    elif mode == "session":
        from .logging import setup_logging

        # stdout carries only the JSON summary
        setup_logging(json=False, level="WARNING", stream=sys.stderr)
        asyncio.run(_print_session())


if __name__ == "__main__":
    main()
