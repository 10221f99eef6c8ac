#!/usr/bin/env python3

"""
Listing Harvester - Main Entry Point
Crawls a job listing, harvests every detail page and keeps a JSON catalog
"""

import argparse
import logging
import signal
import sys
from pathlib import Path

from dotenv import load_dotenv

from config_loader import load_config
from orchestrator import Orchestrator, build_search_url

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def setup_logging(config) -> None:
    """Configure logging for the application"""
    log_file = config.get_log_file()
    log_file.parent.mkdir(parents=True, exist_ok=True)

    log_level = getattr(logging, str(config.get_log_level()).upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file, encoding='utf-8'),
            logging.StreamHandler()
        ]
    )

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized: {log_file}")


def display_config(config) -> None:
    """Display loaded configuration"""
    print("\n" + "="*60)
    print("🕸️  LISTING HARVESTER")
    print("="*60)

    print("\n📋 SEARCH:")
    print(f"  Mode: {config.get_search_mode()}")
    print(f"  Start URL: {build_search_url(config)}")
    max_pages = config.get_max_pages()
    max_pages_label = "unlimited (auto-stop)" if max_pages <= 0 else str(max_pages)
    print(f"📄 Max pages: {max_pages_label}")

    print(f"\n⚙️  HARVEST SETTINGS:")
    print(f"  Workers: {config.get_workers()}")
    print(f"  Retry attempts: {config.get_retry_attempts()}")
    print(f"  Delay range: {config.get_min_delay()}s - {config.get_max_delay()}s")
    endpoint = config.get_browser_endpoint()
    print(f"  Browser: {endpoint or 'local Chromium'}")
    print(f"  Page timeout: {config.get_page_timeout()/1000}s")

    print(f"\n💾 OUTPUT:")
    print(f"  JSON: {config.get_output_path()}")

    print("\n" + "="*60 + "\n")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Listing Harvester")
    parser.add_argument(
        "--config",
        default="config/settings.yaml",
        help="Path to config YAML",
    )
    parser.add_argument(
        "--count-pages",
        action="store_true",
        help="Count listing pages and save the result as scraper.max_pages",
    )
    return parser.parse_args(argv)


def install_signal_handlers(orchestrator: Orchestrator) -> None:
    def _handle(signum, frame):
        print("\n⚠️  Interrupt received; finishing current jobs and saving...")
        orchestrator.stop()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def run_count_pages(config) -> int:
    orchestrator = Orchestrator(config)
    install_signal_handlers(orchestrator)
    count = orchestrator.count_pages()

    print("\n" + "="*60)
    print(f"📄 Pages counted: {count.counted_pages}")
    print(f"🔢 Pagination shows: {count.inferred_pages}")
    if count.total_records:
        print(f"📊 Total records reported: {count.total_records}")
    print("="*60 + "\n")

    config.set_max_pages(count.total_pages)
    print(f"✓ Saved scraper.max_pages={count.total_pages} to {config.config_path}")
    return 0


def main(argv=None):
    """Main execution function"""
    print("\n🚀 Starting Listing Harvester...")
    load_dotenv(dotenv_path=PROJECT_ROOT / ".env", override=False)
    args = parse_args(argv)

    # Load configuration
    try:
        config = load_config(args.config)
    except FileNotFoundError as e:
        print(f"❌ Error: {e}")
        print("Make sure config/settings.yaml exists!")
        return 1
    except Exception as e:
        print(f"❌ Error loading config: {e}")
        return 1

    setup_logging(config)
    logger = logging.getLogger(__name__)

    display_config(config)

    if args.count_pages:
        try:
            return run_count_pages(config)
        except Exception as e:
            logger.exception("Page count failed")
            print(f"❌ Page count failed: {e}")
            return 1

    orchestrator = Orchestrator(config)
    install_signal_handlers(orchestrator)
    try:
        summary = orchestrator.run()
    except Exception as e:
        logger.exception("Run failed")
        print(f"❌ Run failed: {e}")
        return 1

    print("\n" + "="*60)
    print("⏹️  HARVEST STOPPED" if summary.stopped else "✅ HARVEST COMPLETE")
    print("="*60)
    print(f"\n📄 Pages visited: {summary.crawl.pages_visited} ({summary.crawl.stop_reason})")
    print(f"✓ Completed: {summary.completed}")
    print(f"✗ Failed: {summary.failed}")
    if summary.pending:
        print(f"⏸️  Left pending: {summary.pending}")
    print(f"↻ Retried: {summary.retried}")
    print(f"💾 Records stored: {summary.stored_records}")
    print(f"⏱️  Elapsed: {summary.elapsed_seconds}s")
    print(f"📁 File: {config.get_output_path()}")
    print("\n" + "="*60 + "\n")

    logger.info(f"Harvest complete: {summary.stored_records} records stored")
    return 0


if __name__ == "__main__":
    sys.exit(main())
