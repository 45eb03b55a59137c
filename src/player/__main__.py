"""
Entry point for: python3 -m src.player --terminal-id <ID>

Launches the headless terminal player session.
"""

from .player import main

if __name__ == "__main__":
    main()
