from __future__ import annotations

import argparse
from pathlib import Path
import sys
import time

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from app.client.quotes_api import QuoteApiClient
from app.client.reconnect import ReconnectionController
from app.client.transports import build_stream_transport
from app.errors import TradeRequestError


def _render(controller: ReconnectionController) -> None:
    snap = controller.snapshot()
    latest = snap["quotes"][-1] if snap["quotes"] else None
    line = f"status={snap['status']} attempts={snap['reconnect_attempts']}"
    if latest:
        flag = " (cached)" if latest.get("cached") else ""
        line += f" {latest['symbol']}=${latest['price']:.2f}{flag}"
    if snap["error"]:
        line += f" error={snap['error']}"
    print(line, flush=True)


def main() -> None:
    parser = argparse.ArgumentParser(description="Follow live quotes from a quote relay server.")
    parser.add_argument("--server", default="http://localhost:9000")
    parser.add_argument("--symbol", default="AAPL")
    parser.add_argument("--trade", metavar="STRATEGY", help="request one trade signal and exit")
    args = parser.parse_args()

    api = QuoteApiClient(args.server)
    if args.trade:
        try:
            result = api.execute_trade(args.symbol, args.trade)
        except TradeRequestError as exc:
            print(f"trade failed: {exc}", flush=True)
            raise SystemExit(1)
        print(f"{result['symbol']} ${result['price']:.2f} signal={result['tradeSignal']}", flush=True)
        return

    snapshot = api.fetch_stock(args.symbol)
    if snapshot.get("error"):
        print(f"initial quote unavailable: {snapshot['error']}", flush=True)

    controller = ReconnectionController(
        lambda options: build_stream_transport(args.server, args.symbol, options),
        on_change=_render,
    )
    controller.connect()
    try:
        while True:
            time.sleep(1.0)
            if controller.terminal:
                answer = input("reconnect? [y/N] ").strip().lower()
                if answer != "y":
                    break
                controller.manual_reconnect()
    except KeyboardInterrupt:
        pass
    finally:
        controller.close()


if __name__ == "__main__":
    main()
