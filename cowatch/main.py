from __future__ import annotations

import argparse
import asyncio
import sys

from .app import AppConfig, CowatchClient
from .config import ClientConfig, MediaConfig
from .logging_config import setup_logging


def main(argv: list[str] | None = None) -> int:
	client_defaults = ClientConfig.from_env()
	media_defaults = MediaConfig.from_env()

	parser = argparse.ArgumentParser(description="cowatch client")
	parser.add_argument(
		"--log-level",
		default=None,
		help="Logging level (debug, info, warning, error). Can also use COWATCH_LOG_LEVEL.",
	)
	parser.add_argument(
		"--server-url",
		default=client_defaults.server_url,
		help="WebSocket coordinator URL (COWATCH_SERVER_URL)",
	)
	parser.add_argument(
		"--room",
		default=client_defaults.room,
		help="Room to join on startup (COWATCH_ROOM)",
	)
	parser.add_argument(
		"--name",
		default=client_defaults.name,
		help="Display name for chat (COWATCH_NAME)",
	)
	parser.add_argument(
		"--stun-url",
		default=client_defaults.stun_url,
		help="STUN server (COWATCH_STUN_URL)",
	)
	parser.add_argument(
		"--record",
		default=media_defaults.record_path,
		help="Record the peer's call media to this path (COWATCH_RECORD_PATH)",
	)
	args = parser.parse_args(argv)

	setup_logging(args.log_level)

	cfg = AppConfig(
		client=ClientConfig(
			server_url=args.server_url,
			room=args.room,
			name=args.name,
			stun_url=args.stun_url,
			join_timeout_sec=client_defaults.join_timeout_sec,
		),
		media=MediaConfig(audio=media_defaults.audio, video=media_defaults.video, record_path=args.record),
	)
	client = CowatchClient(cfg)
	try:
		asyncio.run(client.run())
	except KeyboardInterrupt:
		pass
	return 0


if __name__ == "__main__":
	raise SystemExit(main(sys.argv[1:]))
