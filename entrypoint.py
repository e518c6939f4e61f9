import errno
import os
import socket
import sys
import time

import uvicorn

from constants import HOST, PORT, PORT_ATTEMPTS, PORT_RETRY_DELAY, LOG_LEVEL, LOG_FILE
from logging_config import setup_logging

# Setup logging before importing app
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)

from logging_config import get_logger

logger = get_logger(__name__)


def bind_with_fallback(host: str, port: int, attempts: int = PORT_ATTEMPTS,
                       retry_delay: float = PORT_RETRY_DELAY) -> socket.socket:
    """Bind a listening socket on `port`, moving to the next port while the address is taken.

    Raises the last OSError once `attempts` ports have been tried, or immediately
    for errors other than "address in use".
    """
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    for attempt in range(1, attempts + 1):
        sock = socket.socket(family, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
        except OSError as e:
            sock.close()
            if e.errno != errno.EADDRINUSE or attempt == attempts:
                raise
            logger.warning(f"Port {port} in use. Retrying on {port + 1}...")
            port += 1
            time.sleep(retry_delay)
            continue
        sock.set_inheritable(True)
        return sock
    raise OSError(errno.EADDRINUSE, f"No free port after {attempts} attempts")


def main():
    host = os.getenv("HOST", HOST)
    port = int(os.getenv("PORT", PORT))
    try:
        sock = bind_with_fallback(host, port)
    except OSError as e:
        logger.error(f"Failed to start server: {e}")
        sys.exit(1)

    from app import app

    bound_port = sock.getsockname()[1]
    logger.info(f"Starting watchsync server on {host}:{bound_port}")
    config = uvicorn.Config(app, host=host, port=bound_port, log_level=LOG_LEVEL.lower())
    uvicorn.Server(config).run(sockets=[sock])


if __name__ == "__main__":
    main()
