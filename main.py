"""
Vibes Assistant — Entry Point.

Single entry point: `python main.py` starts the web server, which runs the
Telegram bot (webhook or long polling) and the daily checkup jobs.
"""

import logging

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

from vibes.web.server import main

if __name__ == "__main__":
    main()
