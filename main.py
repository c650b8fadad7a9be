#!/usr/bin/env python3
"""
DevGate — Telegram gateway for a local AI coding agent
=======================================================
Telegram long polling → per-chat queue → tool-calling reasoning loop → reply.

Run with ``python main.py`` or the ``devgate`` console script.
"""

from gateway import main

if __name__ == "__main__":
    main()
