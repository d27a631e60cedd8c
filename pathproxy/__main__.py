import argparse
import os


def parse_args():
    parser = argparse.ArgumentParser(
        description="Path-embedded HTTP forward proxy: GET /<target-url>"
    )
    parser.add_argument("--host", help="Bind address (default: $PROXY_HOST or 0.0.0.0)")
    parser.add_argument("--port", type=int, help="Bind port (default: $PROXY_PORT or 3000)")
    parser.add_argument(
        "--config", help="Routing config file (default: $PROXY_CONFIG_FILE or proxy_config.xml)"
    )
    parser.add_argument(
        "--log-level", default="info", help="uvicorn log level (default: info)"
    )
    return parser.parse_args()


def main():
    args = parse_args()
    # Settings are read from the environment when pathproxy.vars is imported
    if args.host:
        os.environ["PROXY_HOST"] = args.host
    if args.port:
        os.environ["PROXY_PORT"] = str(args.port)
    if args.config:
        os.environ["PROXY_CONFIG_FILE"] = args.config

    import uvicorn

    from pathproxy.vars import PROXY_HOST, PROXY_PORT

    uvicorn.run(
        "pathproxy.server:app",
        host=args.host or PROXY_HOST,
        port=args.port or PROXY_PORT,
        log_level=args.log_level,
    )


if __name__ == "__main__":
    main()
