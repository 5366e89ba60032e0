#!/usr/bin/env python3
"""
mmfm-playback service entry point.

    python -m mmfm_playback -c /etc/mmfm-playback/config.json [-v] [--flush-cache]

Exits 1 when the config is invalid or the playlist never loads; otherwise
runs until SIGTERM / SIGINT.
"""

import argparse
import asyncio
import logging
import signal
import sys

from .lib.cache import ContentCache
from .lib.config import config_path, load_playback_config
from .lib.errors import ConfigError, PlaylistError
from .lib.watchdog import watchdog_loop
from .player import PlaybackOrchestrator
from .status import StatusServer

log = logging.getLogger("mmfm-playback")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="mmfm-playback", description="Shared group-listening player")
    parser.add_argument("-c", "--config", default="config.json", help="config json file")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    parser.add_argument("--flush-cache", action="store_true",
                        help="delete every cached track before starting")
    return parser.parse_args(argv)


async def serve(conf, flush_cache=False) -> int:
    if flush_cache:
        ContentCache(conf.cache).flush()

    player = PlaybackOrchestrator.from_config(conf)
    status = StatusServer(player, conf.status_port) if conf.status_port else None

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)

    log.info("mmfm playback start")
    starter = asyncio.create_task(player.start())
    stopper = asyncio.create_task(stop_event.wait())
    tasks = [starter, stopper]
    try:
        await asyncio.wait({starter, stopper}, return_when=asyncio.FIRST_COMPLETED)
        if not starter.done():
            log.info("Stopped during startup")
            return 0
        starter.result()

        if status:
            await status.start()
        tasks.append(asyncio.create_task(watchdog_loop(player.alive)))
        listener = asyncio.create_task(player.listen())
        tasks.append(listener)
        await asyncio.wait({listener, stopper}, return_when=asyncio.FIRST_COMPLETED)
        if listener.done():
            listener.result()
        return 0
    except PlaylistError as e:
        log.error("Could not load the playlist: %s", e)
        return 1
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if status:
            await status.stop()
        await player.stop()


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(asctime)s] %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    try:
        conf = load_playback_config(args.config)
    except ConfigError as e:
        log.error("Configuration validation failed: %s", e)
        return 1
    log.info("mmfm playback config (%s): ws=%s web=%s cache=%s player=%s, %d scheduled audio(s)",
             config_path() or "environment", conf.ws, conf.web, conf.cache, conf.player,
             len(conf.scheduled_audios))
    return asyncio.run(serve(conf, flush_cache=args.flush_cache))


if __name__ == "__main__":
    sys.exit(main())
