"""
Command-line maintenance for the rate limiter and cache stores.

Usage:
  guardcache serve --host 0.0.0.0 --port 8000
  guardcache gc
  guardcache ban 203.0.113.9 --duration 600
  guardcache unban 203.0.113.9
  guardcache status 203.0.113.9
  guardcache cache-clear --driver sqlite
"""

from __future__ import annotations

import argparse
import json
import sys

from guardcache.cache import CacheManager
from guardcache.config import get_settings
from guardcache.exceptions import GuardCacheError
from guardcache.rate_limit import RateLimiter


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="guardcache", description="Rate limiter and cache maintenance")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the API server")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true")

    gc = sub.add_parser("gc", help="Remove expired requests, bans and cache entries")
    gc.add_argument("--driver", default=None, help="Cache driver (default: configured)")

    ban = sub.add_parser("ban", help="Ban an IP address")
    ban.add_argument("ip")
    ban.add_argument("--duration", type=int, default=None, help="Seconds (default: configured ban duration)")

    unban = sub.add_parser("unban", help="Lift a ban")
    unban.add_argument("ip")

    status = sub.add_parser("status", help="Show quota usage and ban state for an IP")
    status.add_argument("ip")

    clear = sub.add_parser("cache-clear", help="Delete every cache entry")
    clear.add_argument("--driver", default=None, help="Cache driver (default: configured)")

    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    settings = get_settings()

    if args.command == "serve":
        import uvicorn

        uvicorn.run("guardcache.api:create_app", factory=True, host=args.host, port=args.port, reload=args.reload)
        return 0

    try:
        if args.command in ("gc", "cache-clear"):
            manager = CacheManager(settings)
            cache = manager.get_instance(args.driver)
            try:
                if args.command == "cache-clear":
                    cache.clear()
                    print(json.dumps({"cache_cleared": cache.driver}))
                    return 0
                limiter = RateLimiter.from_settings(settings, collect_on_init=False)
                try:
                    result = limiter.collect_garbage()
                finally:
                    limiter.close()
                print(json.dumps({
                    "requests_removed": result.requests_removed,
                    "bans_removed": result.bans_removed,
                    "cache_removed": cache.gc(),
                    "driver": cache.driver,
                }))
            finally:
                manager.close()
            return 0

        limiter = RateLimiter.from_settings(settings)
        try:
            if args.command == "ban":
                expires = limiter.ban_ip(args.ip, args.duration)
                print(json.dumps({"ip": args.ip, "ban_expires": expires}))
            elif args.command == "unban":
                print(json.dumps({"ip": args.ip, "unbanned": limiter.unban_ip(args.ip)}))
            elif args.command == "status":
                print(json.dumps({"ip": args.ip, **limiter.get_stats(args.ip)}))
        finally:
            limiter.close()
        return 0
    except GuardCacheError as exc:
        exc.log()
        print(f"error: {exc}", file=sys.stderr)
        return 1
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
