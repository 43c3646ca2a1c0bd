#!/usr/bin/env python3
from __future__ import annotations

import argparse
import os

import uvicorn


def _set_env(name: str, value: str | None) -> None:
    if value is None:
        return
    clean = str(value).strip()
    if clean:
        os.environ[name] = clean


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the chartwork workspace backend.")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8080)
    parser.add_argument("--reload", action="store_true")
    parser.add_argument("--app", default="chartwork.main:app")

    parser.add_argument("--mutation-backend", choices=["local", "remote"])
    parser.add_argument("--mutation-backend-url", default=None)
    parser.add_argument("--centrifugo-api-url", default=None)
    parser.add_argument("--app-version", default=None)
    parser.add_argument("--mongodb-uri", default=None)
    parser.add_argument("--mongodb-db", default=None)

    args = parser.parse_args()

    _set_env("MUTATION_BACKEND", args.mutation_backend)
    _set_env("MUTATION_BACKEND_URL", args.mutation_backend_url)
    _set_env("CENTRIFUGO_API_URL", args.centrifugo_api_url)
    _set_env("APP_VERSION", args.app_version)
    _set_env("MONGODB_URI", args.mongodb_uri)
    _set_env("MONGODB_DB", args.mongodb_db)

    uvicorn.run(args.app, host=args.host, port=int(args.port), reload=bool(args.reload))


if __name__ == "__main__":
    main()
