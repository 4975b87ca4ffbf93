"""Module entrypoint for running the watcher with shared settings."""

from brc20_watcher.services.watcher.main import main

if __name__ == "__main__":
    raise SystemExit(main())
