from __future__ import annotations

import argparse
import logging

from app.workers.status_poller import DEFAULT_BATCH_SIZE, poll_once
from main import create_app


def main() -> None:
    parser = argparse.ArgumentParser(description="Check gateway status of processing payouts once.")
    parser.add_argument("--batch-size", type=int, default=DEFAULT_BATCH_SIZE)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    app = create_app()
    summary = poll_once(app.state.lifecycle, app.state.payout_store, batch_size=max(1, args.batch_size))

    print(
        "counts:",
        f"checked={summary.checked}",
        f"completed={summary.completed}",
        f"failed={summary.failed}",
        f"unchanged={summary.unchanged}",
        f"errors={summary.errors}",
        f"settled={summary.settled}",
    )
    for payout_id in summary.error_ids:
        print("error:", payout_id)


if __name__ == "__main__":
    main()
