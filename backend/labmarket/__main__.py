"""labmarket CLI entry point."""

import argparse
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import ValidationError

env_file = Path(__file__).parent.parent / ".env"
load_dotenv(env_file)

from labmarket import __version__
from labmarket.config import get_settings
from labmarket.ledger import LedgerError
from labmarket.storage import create_default_state, load_state, save_state

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

logger = logging.getLogger(__name__)

CONFIG_TEMPLATE = """# labmarket Configuration
# Operational parameters for the experiment ledger.
# Secrets such as the Logfire token belong in .env, not here.

ledger:
  min_unit: 1
  unbet_timeout_days: 60
  pool_account: labmarket-pool
  primary_identity: primary-admin
  secondary_identity: null

assets:
  paper_mode: true
  symbol: LAB

notifications:
  log_to_logger: true
  log_to_file: true

api:
  host: 127.0.0.1
  port: 8000
  allowed_origins:
    - http://localhost:3000
  caller_header: X-Caller
  persist: true
"""


def cmd_init(args: argparse.Namespace) -> int:
    """Initialize data directory, configuration template and an empty ledger."""
    try:
        data_dir = get_settings().data_dir
        data_dir.mkdir(parents=True, exist_ok=True)
        (data_dir / "notifications").mkdir(parents=True, exist_ok=True)
        logger.info(f"Data directory ready: {data_dir}")

        config_path = data_dir / "config.yaml"
        if not config_path.exists():
            config_path.write_text(CONFIG_TEMPLATE)
            logger.info(f"Wrote config template to {config_path}")
        else:
            logger.info(f"Keeping existing {config_path}")

        state_path = data_dir / "ledger.yaml"
        if not state_path.exists():
            get_settings.cache_clear()
            save_state(create_default_state(), data_dir)
            logger.info(f"Created empty ledger: {state_path}")
        else:
            logger.info(f"Ledger file already exists: {state_path}")

        print(f"\n✓ labmarket data initialized at {data_dir}")
        print("\nNext steps:")
        print(f"1. Review {config_path} and set the role identities")
        print("2. Run 'python -m labmarket config' to verify configuration")
        print("3. Run 'python -m labmarket serve' to start the API\n")

        return 0

    except Exception as e:
        logger.error(f"init failed: {e}")
        print(f"\n❌ Initialization failed: {e}\n")
        return 1


def cmd_config(args: argparse.Namespace) -> int:
    """Print the effective configuration after env and YAML merging."""
    try:
        settings = get_settings()

        print("\n=== labmarket Configuration ===\n")
        print(f"Data Directory: {settings.data_dir}")
        print(f"Environment: {settings.environment}\n")

        print("Ledger:")
        print(f"  Min Unit: {settings.ledger.min_unit}")
        print(f"  Unbet Timeout: {settings.ledger.unbet_timeout_days} days")
        print(f"  Pool Account: {settings.ledger.pool_account}")
        print(f"  Primary: {settings.ledger.primary_identity}")
        print(f"  Secondary: {settings.ledger.secondary_identity or '(none)'}\n")

        print("Assets:")
        print(f"  Paper Mode: {settings.assets.paper_mode}")
        print(f"  Symbol: {settings.assets.symbol}\n")

        print("Notifications:")
        print(f"  Logger: {settings.notifications.log_to_logger}")
        print(f"  JSONL File: {settings.notifications.log_to_file}\n")

        print("API:")
        print(f"  Listen: {settings.api.host}:{settings.api.port}")
        print(f"  Caller Header: {settings.api.caller_header}")
        print(f"  Persist: {settings.api.persist}\n")

        print("Secrets:")
        print(f"  Logfire: {'✓ Set' if settings.logfire_token else '✗ Not set'}\n")

        return 0

    except ValidationError as e:
        print("\n❌ Configuration Error:\n")
        for error in e.errors():
            print(f"  • {'.'.join(str(x) for x in error['loc'])}: {error['msg']}")
        print()
        return 1
    except Exception as e:
        logger.error(f"Failed to load config: {e}")
        print(f"\n❌ Failed to load configuration: {e}\n")
        return 1


def _load_existing_state():
    settings = get_settings()
    state_path = settings.data_dir / "ledger.yaml"
    if not state_path.exists():
        print(f"\n❌ Ledger file not found: {state_path}")
        print("Run 'python -m labmarket init' to create it.\n")
        return None
    return load_state(settings.data_dir)


def cmd_status(args: argparse.Namespace) -> int:
    """Display roles and a summary of every experiment."""
    try:
        state = _load_existing_state()
        if state is None:
            return 1

        print("\n=== labmarket Ledger Status ===\n")
        print(f"Last Updated: {state.last_updated or 'never'}")
        print(f"Primary: {state.roles.primary}")
        print(f"Secondary: {state.roles.secondary or '(none)'}\n")

        print(f"Experiments: {len(state.experiments)}")
        if state.experiments:
            for experiment in state.experiments:
                status = "open" if experiment.open else "closed"
                print(
                    f"  #{experiment.id} [{status}, {experiment.betting_outcome.value}] "
                    f"deposited {experiment.total_deposited}/{experiment.cost_max} "
                    f"bets ({experiment.total_bet0}, {experiment.total_bet1})"
                )
        else:
            print("  (None)")
        print()

        return 0

    except Exception as e:
        logger.error(f"Failed to read status: {e}")
        print(f"\n❌ Failed to read status: {e}\n")
        return 1


def cmd_show(args: argparse.Namespace) -> int:
    """Show one experiment and every position on it."""
    try:
        state = _load_existing_state()
        if state is None:
            return 1

        store = state.to_store()
        experiment = store.get(args.experiment_id)

        print(f"\n=== Experiment #{experiment.id} ===\n")
        print(f"Created: {experiment.created_at}")
        print(f"Open: {experiment.open}")
        print(f"Cost Bounds: {experiment.cost_min}..{experiment.cost_max}")
        print(f"Deposited: {experiment.total_deposited}")
        print(f"Funding Goal Met: {experiment.funding_goal_met}")
        print(f"Bets: side0={experiment.total_bet0} side1={experiment.total_bet1}")
        print(f"Outcome: {experiment.betting_outcome.value}")
        if experiment.is_resolved:
            print(
                f"Settled Pool: {experiment.settled_pool} "
                f"(winning total {experiment.settled_winning_total})"
            )

        rows = store.positions_for(experiment.id)
        print(f"\nPositions: {len(rows)}")
        for row in rows:
            print(
                f"  {row.participant}: deposit {row.deposit_amount}, "
                f"bets ({row.bet0_amount}, {row.bet1_amount})"
            )
        print()

        return 0

    except LedgerError as e:
        print(f"\n❌ {e.message}\n")
        return 1
    except Exception as e:
        logger.error(f"Failed to show experiment: {e}")
        print(f"\n❌ Failed to show experiment: {e}\n")
        return 1


def cmd_positions(args: argparse.Namespace) -> int:
    """List a participant's positions across experiments."""
    try:
        state = _load_existing_state()
        if state is None:
            return 1

        rows = state.to_store().positions_of(args.participant)

        print(f"\n=== Positions for {args.participant} ===\n")
        if not rows:
            print("  (None)\n")
            return 0

        for row in rows:
            print(
                f"  #{row.experiment_id}: deposit {row.deposit_amount}, "
                f"bets ({row.bet0_amount}, {row.bet1_amount})"
            )
        if state.assets is not None:
            balance = state.assets.balances.get(args.participant, 0)
            print(f"\nWallet: {balance} {state.assets.symbol}")
        print()

        return 0

    except Exception as e:
        logger.error(f"Failed to list positions: {e}")
        print(f"\n❌ Failed to list positions: {e}\n")
        return 1


def cmd_serve(args: argparse.Namespace) -> int:
    """Start the HTTP API."""
    import uvicorn

    from labmarket.api import create_app
    from labmarket.observability import initialize_logfire
    from labmarket.runtime import build_runtime

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        settings = get_settings()
        settings.data_dir.mkdir(parents=True, exist_ok=True)
        runtime = build_runtime(load_state(settings.data_dir), settings=settings)
        app = create_app(runtime)
        initialize_logfire(settings, app=app)

        host = args.host or settings.api.host
        port = args.port or settings.api.port
        print(f"\n✓ Serving labmarket API on http://{host}:{port}\n")
        uvicorn.run(app, host=host, port=port)
        return 0

    except Exception as e:
        logger.error(f"Server failed: {e}", exc_info=True)
        print(f"\n❌ Server failed: {e}\n")
        return 1


def main() -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="labmarket: crowdfunded experiments with a binary prediction market",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"labmarket {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    parser_init = subparsers.add_parser(
        "init",
        help="Initialize data directory and configuration",
    )
    parser_init.set_defaults(func=cmd_init)

    parser_config = subparsers.add_parser(
        "config",
        help="Print the effective configuration",
    )
    parser_config.set_defaults(func=cmd_config)

    parser_status = subparsers.add_parser(
        "status",
        help="Display roles and experiment summary",
    )
    parser_status.set_defaults(func=cmd_status)

    parser_show = subparsers.add_parser(
        "show",
        help="Show one experiment and its positions",
    )
    parser_show.add_argument(
        "--experiment-id",
        type=int,
        required=True,
        help="Experiment ID to show",
    )
    parser_show.set_defaults(func=cmd_show)

    parser_positions = subparsers.add_parser(
        "positions",
        help="List a participant's positions",
    )
    parser_positions.add_argument(
        "--participant",
        required=True,
        help="Participant identity",
    )
    parser_positions.set_defaults(func=cmd_positions)

    parser_serve = subparsers.add_parser(
        "serve",
        help="Start the HTTP API server",
    )
    parser_serve.add_argument("--host", help="Bind address (default from config)")
    parser_serve.add_argument("--port", type=int, help="Port (default from config)")
    parser_serve.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser_serve.set_defaults(func=cmd_serve)

    args = parser.parse_args()

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
