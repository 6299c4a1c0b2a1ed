import argparse
import asyncio
import json
import signal
import sys

from config import (
    DEFAULT_CURRENCIES,
    DEFAULT_STRATEGY,
    DEFAULT_WORD_COUNT,
    ETHERSCAN_API_KEY,
    USE_REAL_API,
)
from src.errors import ScannerError, ValidationError
from src.learning import advanced_model, basic_model
from src.learning.strategy_controller import get_strategy_controller
from src.learning.training_feed import TrainingFeed
from src.wallet.balance_checker import BalanceChecker
from src.wallet.scanner import run_batch
from src.wallet.wordlist import analyze_phrase, get_suggestions, validate_phrase
from utils.logger import get_logger

logger = get_logger("MAIN")


def _print_json(data):
    print(json.dumps(data, indent=2, default=str))


def _banner(title):
    print("\n" + "=" * 60)
    print(title)
    print("=" * 60)


# ============================
# SCAN
# ============================

def cmd_scan(args):
    stop = {"requested": False}

    def _request_stop(signum, frame):
        logger.warning("Stop requested, finishing current phrase")
        stop["requested"] = True

    signal.signal(signal.SIGINT, _request_stop)

    checker = BalanceChecker(use_real_api=args.real_api, api_key=args.api_key)
    currencies = [c.strip().upper() for c in args.currencies.split(",") if c.strip()]

    result = asyncio.run(run_batch(
        count=args.count,
        word_count=args.words,
        currencies=currencies,
        strategy=args.strategy,
        use_advanced=args.advanced,
        ngram_strategy=args.ngram_strategy,
        controller=get_strategy_controller(),
        checker=checker,
        should_stop=lambda: stop["requested"],
        seed=args.seed,
    ))

    _banner("SCAN SUMMARY")
    print(f"Strategy: {result.strategy_used}")
    print(f"Scanned: {result.scanned}  Found: {result.found}  Errors: {result.errors}")
    print(f"Elapsed: {result.elapsed_seconds:.2f}s ({result.scanned_per_second:.1f}/s)")
    if result.stopped:
        print("Stopped early")
    for outcome in result.found_list:
        print(f"  {', '.join(outcome.hit_currencies)}  ${outcome.total_usd:.2f}")
    print("=" * 60)


# ============================
# TRAINING
# ============================

def cmd_train(args):
    feed = TrainingFeed(get_strategy_controller())
    _print_json(feed.submit(args.phrase, args.currency, args.has_balance, args.usd, args.notes))


def cmd_history(args):
    feed = TrainingFeed(get_strategy_controller())
    _print_json({"submissions": feed.history(args.limit, args.offset), "stats": feed.stats()})


# ============================
# STATS / HEALTH
# ============================

def cmd_stats(args):
    controller = get_strategy_controller()
    metrics = controller.get_metrics()
    _print_json({
        "basic": basic_model.stats(controller.load_basic_state(), controller.config),
        "advanced": advanced_model.stats(controller.load_advanced_state()),
        "performance": {
            "best_strategy": metrics.best_strategy,
            "worst_strategy": metrics.worst_strategy,
            "improvement_rate": metrics.improvement_rate,
            "confidence": metrics.confidence,
            "recommended_strategy": controller.recommend_strategy(),
        },
        "training": controller.store.training_stats(),
        "store": controller.store.get_stats(),
    })


def cmd_health(args):
    controller = get_strategy_controller()
    report = {"learning": controller.get_health_status()}
    if args.network:
        checker = BalanceChecker(use_real_api=True, api_key=args.api_key)
        report["network"] = asyncio.run(checker.health_check())
    _print_json(report)


# ============================
# PHRASE TOOLS
# ============================

def cmd_validate(args):
    _print_json({
        "validation": validate_phrase(args.phrase).to_dict(),
        "analysis": analyze_phrase(args.phrase),
    })


def cmd_suggest(args):
    _print_json(get_suggestions(args.prefix, args.limit))


# ============================
# EXPORT / IMPORT / RESET / CONFIG
# ============================

def cmd_export(args):
    snapshot = get_strategy_controller().export_state()
    with open(args.file, "w") as f:
        json.dump(snapshot, f, indent=2)
    print(f"Exported to {args.file}")


def cmd_import(args):
    try:
        with open(args.file, "r") as f:
            snapshot = json.load(f)
    except ValueError as e:
        raise ValidationError(f"{args.file} is not valid JSON: {e}")
    get_strategy_controller().import_state(snapshot)
    print(f"Imported {args.file}")


def cmd_reset(args):
    controller = get_strategy_controller()
    {
        "state": controller.reset_state,
        "config": controller.reset_config,
        "metrics": controller.reset_metrics,
        "all": controller.reset_all,
    }[args.what]()
    print(f"Reset: {args.what}")


def cmd_config(args):
    controller = get_strategy_controller()

    if args.learning_rate is not None:
        controller.set_learning_rate(args.learning_rate)
    if args.hybrid is not None:
        frequency, positional, correlation = args.hybrid
        controller.set_hybrid_weights(frequency, positional, correlation)
    if args.enable or args.disable:
        flags = {name: True for name in args.enable or []}
        flags.update({name: False for name in args.disable or []})
        controller.configure_learning(**flags)

    _print_json(controller.get_config().to_dict())


# ============================
# ENTRY POINT
# ============================

LEARNING_TYPES = ("frequency", "positional", "correlation")


def build_parser():
    parser = argparse.ArgumentParser(description="Adaptive seed phrase scanner")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("scan", help="Run a scan batch")
    p.add_argument("--count", type=int, default=100)
    p.add_argument("--words", type=int, default=DEFAULT_WORD_COUNT, choices=(12, 24))
    p.add_argument("--currencies", default=",".join(DEFAULT_CURRENCIES),
                   help="Comma separated, e.g. ETH,BTC,SOL")
    p.add_argument("--strategy", default=DEFAULT_STRATEGY,
                   help="random|frequency|positional|correlated|hybrid|adaptive")
    p.add_argument("--advanced", action="store_true", help="Use the N-gram model once it has data")
    p.add_argument("--ngram-strategy", default="adaptive", help="bigram|trigram|quadgram|adaptive")
    p.add_argument("--real-api", action="store_true", default=USE_REAL_API)
    p.add_argument("--api-key", default=ETHERSCAN_API_KEY)
    p.add_argument("--seed", type=int, default=None)
    p.set_defaults(func=cmd_scan)

    p = sub.add_parser("train", help="Submit a training example")
    p.add_argument("phrase")
    p.add_argument("--currency", default="ETH")
    p.add_argument("--has-balance", action="store_true")
    p.add_argument("--usd", type=float, default=0.0)
    p.add_argument("--notes", default=None)
    p.set_defaults(func=cmd_train)

    p = sub.add_parser("history", help="Training submission history")
    p.add_argument("--limit", type=int, default=10)
    p.add_argument("--offset", type=int, default=0)
    p.set_defaults(func=cmd_history)

    p = sub.add_parser("stats", help="Learning and performance statistics")
    p.set_defaults(func=cmd_stats)

    p = sub.add_parser("health", help="Learning health (and upstream APIs with --network)")
    p.add_argument("--network", action="store_true")
    p.add_argument("--api-key", default=ETHERSCAN_API_KEY)
    p.set_defaults(func=cmd_health)

    p = sub.add_parser("validate", help="Validate and analyze a phrase")
    p.add_argument("phrase")
    p.set_defaults(func=cmd_validate)

    p = sub.add_parser("suggest", help="Wordlist autocomplete")
    p.add_argument("prefix")
    p.add_argument("--limit", type=int, default=10)
    p.set_defaults(func=cmd_suggest)

    p = sub.add_parser("export", help="Write a state snapshot")
    p.add_argument("file")
    p.set_defaults(func=cmd_export)

    p = sub.add_parser("import", help="Replace state from a snapshot")
    p.add_argument("file")
    p.set_defaults(func=cmd_import)

    p = sub.add_parser("reset", help="Clear persisted data")
    p.add_argument("what", nargs="?", default="all", choices=("state", "config", "metrics", "all"))
    p.set_defaults(func=cmd_reset)

    p = sub.add_parser("config", help="Show or change learning config")
    p.add_argument("--learning-rate", type=float)
    p.add_argument("--hybrid", type=float, nargs=3, metavar=("FREQ", "POS", "CORR"))
    p.add_argument("--enable", nargs="+", choices=LEARNING_TYPES)
    p.add_argument("--disable", nargs="+", choices=LEARNING_TYPES)
    p.set_defaults(func=cmd_config)

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    try:
        args.func(args)
    except ScannerError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
