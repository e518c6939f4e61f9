import argparse
import asyncio
import sys
import threading

from logging_config import setup_logging
from participant.client import SyncClient
from participant.media import normalize_ws_url, parse_media_ref
from participant.player import SimulatedPlayer


HELP = "/host  /load <id|url>  /play  /pause  /seek <+-seconds>  /rate <r>  /sync  /status  /quit  (anything else is chat)"


def handle_command(client: SyncClient, player: SimulatedPlayer, line: str) -> bool:
    """Apply one line of console input. Returns False when the user asked to quit."""
    line = line.strip()
    if not line:
        return True
    if not line.startswith("/"):
        client.send_chat(line)
        return True

    command, _, arg = line.partition(" ")
    arg = arg.strip()
    reconciler = client.reconciler
    if command == "/quit":
        return False
    elif command == "/host":
        client.claim_host()
    elif command == "/load":
        ref = parse_media_ref(arg)
        if not ref:
            client.set_status("Enter a valid YouTube link or video ID.")
        elif not reconciler.load_media(ref):
            client.set_status("Only the host can load media.")
    elif command == "/play":
        player.play()
    elif command == "/pause":
        player.pause()
    elif command == "/seek":
        try:
            reconciler.seek_by(float(arg))
        except ValueError:
            client.set_status("Usage: /seek <+-seconds>")
    elif command == "/rate":
        try:
            player.set_rate(float(arg))
        except ValueError:
            client.set_status("Usage: /rate <rate>")
    elif command == "/sync":
        client.request_sync()
    elif command == "/status":
        print(f"media={player.get_media() or '-'} state={player.get_play_state().value} "
              f"position={player.get_position():.2f}s rate={player.get_rate()} "
              f"host={'you' if client.is_host else client.host_id} users={client.user_count} "
              f"rtt={reconciler.latency_ms:.0f}ms")
    else:
        print(HELP)
    return True


def _stdin_reader(loop: asyncio.AbstractEventLoop, lines: asyncio.Queue) -> None:
    # Daemon thread: a blocked readline must not keep the process alive after disconnect
    for line in sys.stdin:
        loop.call_soon_threadsafe(lines.put_nowait, line)
    loop.call_soon_threadsafe(lines.put_nowait, "")


async def read_console(client: SyncClient, player: SimulatedPlayer) -> None:
    lines: asyncio.Queue = asyncio.Queue()
    threading.Thread(target=_stdin_reader, args=(asyncio.get_running_loop(), lines), daemon=True).start()
    while True:
        line = await lines.get()
        if not line or not handle_command(client, player, line):
            await client.close()
            return


async def run(args) -> None:
    player = SimulatedPlayer()
    client = SyncClient(
        normalize_ws_url(args.ws),
        args.room.strip(),
        player,
        client_id=args.client_id,
        username=args.name,
        on_chat=lambda msg: print(f"[{msg.get('username')}] {msg.get('text')}"),
    )
    console = asyncio.create_task(read_console(client, player))
    try:
        await client.run()
    finally:
        console.cancel()


def main():
    parser = argparse.ArgumentParser(description="watchsync headless participant")
    parser.add_argument("--ws", default="ws://localhost:3001/ws", help="WebSocket URL")
    parser.add_argument("--room", required=True, help="Room ID")
    parser.add_argument("--name", default=None, help="Display name")
    parser.add_argument("--client-id", default=None, help="Client ID override")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    args = parser.parse_args()

    setup_logging(log_level=args.log_level)
    if not args.room.strip():
        parser.error("--room must not be empty")
    print(HELP)
    asyncio.run(run(args))


if __name__ == "__main__":
    main()
