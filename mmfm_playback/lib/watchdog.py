"""Systemd notify/watchdog support.

Silently no-ops when NOTIFY_SOCKET is unset (dev mode, containers).
The heartbeat only keeps beating while *alive()* is true, so a wedged player
gets restarted by systemd (requires Type=notify and WatchdogSec=).
"""

import asyncio
import logging
import os
import socket

logger = logging.getLogger(__name__)


def sd_notify(msg: str) -> bool:
    """Send *msg* to the systemd notify socket. Returns False when not under systemd."""
    addr = os.environ.get("NOTIFY_SOCKET")
    if not addr:
        return False
    if addr[0] == "@":
        addr = "\0" + addr[1:]
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)
    try:
        sock.sendto(msg.encode(), addr)
    except OSError as e:
        logger.warning("sd_notify(%s) failed: %s", msg, e)
        return False
    finally:
        sock.close()
    return True


async def watchdog_loop(alive, interval: float = 20):
    """READY=1 once, then WATCHDOG=1 every *interval* seconds while alive()."""
    sd_notify("READY=1")
    logger.info("Watchdog started (interval=%ss)", interval)
    while alive():
        sd_notify("WATCHDOG=1")
        await asyncio.sleep(interval)
    logger.error("Player no longer alive — stopping watchdog, systemd will restart us")
