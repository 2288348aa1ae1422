from __future__ import annotations

import argparse
import asyncio
import sys

from ..config import ServerConfig
from ..logging_config import setup_logging
from .app import CoordinatorServer


def main(argv: list[str] | None = None) -> int:
	defaults = ServerConfig.from_env()
	parser = argparse.ArgumentParser(description="cowatch room coordinator")
	parser.add_argument(
		"--log-level",
		default=None,
		help="Logging level (debug, info, warning, error). Can also use COWATCH_LOG_LEVEL.",
	)
	parser.add_argument("--host", default=defaults.host, help="Bind address (COWATCH_HOST)")
	parser.add_argument("--port", type=int, default=defaults.port, help="Bind port (COWATCH_PORT)")
	args = parser.parse_args(argv)

	setup_logging(args.log_level)

	server = CoordinatorServer(ServerConfig(host=args.host, port=args.port))
	try:
		asyncio.run(server.serve_forever())
	except KeyboardInterrupt:
		pass
	return 0


if __name__ == "__main__":
	raise SystemExit(main(sys.argv[1:]))
