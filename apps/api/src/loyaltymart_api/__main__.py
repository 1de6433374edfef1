"""Run the mart or accrual service under uvicorn.

    python -m loyaltymart_api mart --address localhost:8080
    python -m loyaltymart_api accrual --address localhost:8081
"""

from __future__ import annotations

import argparse

import uvicorn

from loyaltymart_api.core.settings import settings

_FACTORIES = {
    "mart": ("loyaltymart_api.app:create_app", lambda: settings.run_address),
    "accrual": ("loyaltymart_api.app:create_accrual_app", lambda: settings.accrual_run_address),
}


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Loyaltymart service runner")
    parser.add_argument("service", choices=sorted(_FACTORIES), help="Which service to run")
    parser.add_argument(
        "--address",
        help="host:port to listen on (defaults to RUN_ADDRESS / ACCRUAL_RUN_ADDRESS)",
    )
    parser.add_argument("--reload", action="store_true", help="Reload on code changes (development only)")
    return parser.parse_args(argv)


def split_address(address: str) -> tuple[str, int]:
    host, _, port = address.rpartition(":")
    if not port.isdigit():
        raise SystemExit(f"Invalid listen address {address!r}; expected host:port")
    return host or "0.0.0.0", int(port)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    factory, default_address = _FACTORIES[args.service]
    host, port = split_address(args.address or default_address())
    uvicorn.run(factory, factory=True, host=host, port=port, reload=args.reload, log_config=None)


if __name__ == "__main__":
    main()
