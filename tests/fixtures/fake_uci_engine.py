"""Minimal UCI engine used to exercise the subprocess channel.

Answers the handshake, reports one fixed line per search and exits on 'quit'.
Run with: python fake_uci_engine.py
"""

import sys


def main() -> None:
    """Serve UCI commands from stdin until 'quit'."""
    for raw in sys.stdin:
        command = raw.strip()
        if command == "uci":
            print("id name FakeSubprocessEngine")
            print("uciok")
        elif command == "isready":
            print("readyok")
        elif command.startswith("go"):
            print("info depth 1 score cp 20 nodes 42 pv g8f6")
            print("bestmove g8f6")
        elif command == "quit":
            break
        sys.stdout.flush()


if __name__ == "__main__":
    main()
