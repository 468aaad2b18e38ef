from __future__ import annotations
import asyncio
import logging

from .config import load_config
from .main import AppContext, serve


def main() -> None:
    cfg = load_config()
    logging.basicConfig(
        level=getattr(logging, cfg.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(serve(AppContext(cfg)))


if __name__ == "__main__":
    main()
