"""
castbridge - Main Entry Point
"""

import asyncio
import signal
import sys
import logging
import os

from castbridge.services.cast_server import CastServer

logger = logging.getLogger(__name__)

async def main():
    """Main entry point"""

    server = None
    stop_requested = asyncio.Event()

    def signal_handler(signum):
        logger.info(f"Received signal {signum}, shutting down...")
        stop_requested.set()

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, signal_handler, signum)
        except NotImplementedError:
            # Windows event loops have no signal handler support
            signal.signal(signum, lambda s, f: loop.call_soon_threadsafe(signal_handler, s))

    try:
        # Get config file path from environment variable or use default
        config_path = os.environ.get('CONFIG_FILE', 'config/config.yaml')
        logger.info(f"Using configuration file: {config_path}")
        server = CastServer(config_path=config_path)

        server_task = asyncio.create_task(server.start())
        stop_task = asyncio.create_task(stop_requested.wait())
        done, _ = await asyncio.wait({server_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)

        if server_task in done:
            stop_task.cancel()
            server_task.result()
        else:
            server_task.cancel()
            await asyncio.gather(server_task, return_exceptions=True)

    except Exception as e:
        logger.error(f"Server failed: {e}")
        return 1
    finally:
        if server:
            await server.stop()

    return 0

def run():
    try:
        exit_code = asyncio.run(main())
        sys.exit(exit_code)
    except KeyboardInterrupt:
        print("\nServer stopped by user")
        sys.exit(0)

if __name__ == "__main__":
    run()
