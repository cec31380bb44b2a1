#!/usr/bin/env python3
"""
Clear the sticky portfolio halt in the persisted ledger.

The running bot never lifts its own halt; after reviewing the losses an
operator stops the bot and runs this tool to allow new entries again.

USAGE:
    python scripts/reset_halt.py [--config-dir DIR] [--dry-run] [--force]

OPTIONS:
    --config-dir DIR  Config directory (default: config)
    --dry-run         Show what would change without making changes
    --force           Skip confirmation prompt

SAFETY:
    - Refuses while the bot's instance lock is held
    - Creates a backup of the ledger file before modification
    - Realized PnL is left untouched. The loss baseline (pnl_baseline) is
      moved to the current total_pnl, so the portfolio stop is measured from
      the reset onward: the halt re-triggers only after a further realized
      loss of portfolio_stop_loss
"""
import argparse
import logging
import sys
from pathlib import Path
from typing import Callable

import yaml

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from infra.instance_lock import SingleInstanceLock  # noqa: E402
from infra.state_store import create_ledger_store_from_config  # noqa: E402

logger = logging.getLogger("reset_halt")


def _load_app_config(config_dir: Path) -> dict:
    path = config_dir / "app.yaml"
    if not path.exists():
        return {}
    with open(path) as f:
        return yaml.safe_load(f) or {}


def reset_halt(
    config_dir: str = "config",
    dry_run: bool = False,
    force: bool = False,
    confirm: Callable[[str], str] = input,
) -> int:
    """
    Returns:
        Process exit code (0 on success or nothing to do)
    """
    app_config = _load_app_config(Path(config_dir))

    lock_cfg = app_config.get("lock") or {}
    lock = SingleInstanceLock(lock_cfg.get("name", "momentum-bot"), lock_cfg.get("dir", "data"))
    holder = lock.holder_pid()
    if holder is not None:
        print(f"ERROR: bot is running (PID={holder}); stop it before resetting the halt")
        return 2

    store = create_ledger_store_from_config(app_config.get("state"))
    state = store.load()
    if state is None:
        print(f"ERROR: no ledger found at {store.describe()}")
        return 1

    print(f"Ledger:     {store.describe()}")
    print(f"Capital:    {float(state.get('capital', 0.0)):.4f}")
    print(f"Total PnL:  {float(state.get('total_pnl', 0.0)):+.4f}")
    print(f"Baseline:   {float(state.get('pnl_baseline', 0.0)):+.4f}")
    print(f"Halted:     {bool(state.get('halted'))} (since {state.get('halted_at')})")

    if not state.get("halted"):
        print("Portfolio is not halted; nothing to do")
        return 0

    if dry_run:
        print(f"[dry-run] would clear the halt flag and set pnl_baseline to {float(state.get('total_pnl', 0.0)):+.4f}")
        return 0

    if not force:
        answer = confirm("Clear the portfolio halt and rebase the loss baseline? [y/N] ")
        if answer.strip().lower() not in ("y", "yes"):
            print("Aborted")
            return 1

    backup_dir = (app_config.get("state") or {}).get("backup_dir")
    backup = store.backup(Path(backup_dir) if backup_dir else None, label="before-halt-reset")
    if backup:
        print(f"Backup created: {backup}")

    state["halted"] = False
    state["halted_at"] = None
    state["pnl_baseline"] = float(state.get("total_pnl", 0.0))
    store.save(state)
    logger.warning("Portfolio halt cleared manually; loss baseline reset to %+.4f", state["pnl_baseline"])
    print("Halt cleared")
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Clear the portfolio halt in the persisted ledger",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config-dir", default="config", help="Config directory")
    parser.add_argument("--dry-run", action="store_true", help="Show what would change without making changes")
    parser.add_argument("--force", action="store_true", help="Skip confirmation prompt")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
    sys.exit(reset_halt(args.config_dir, dry_run=args.dry_run, force=args.force))


if __name__ == "__main__":
    main()
