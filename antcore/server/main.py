"""CLI argument parsing and uvicorn entry point."""

import logging
import os


def main():
    import argparse
    import uvicorn

    from ..app import AntCore
    from .app import create_app

    parser = argparse.ArgumentParser(description="antcore HTTP bridge")
    parser.add_argument("--config", default=os.getenv("ANTCORE_CONFIG", "antcore.yaml"))
    parser.add_argument("--host", default=os.getenv("ANTCORE_HOST", "127.0.0.1"))
    parser.add_argument("--port", type=int, default=int(os.getenv("ANTCORE_PORT", "8765")))
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(levelname)s: %(name)s - %(message)s",
    )

    uvicorn.run(create_app(AntCore(args.config)), host=args.host, port=args.port)


if __name__ == "__main__":
    main()
