"""
Run the stale-restaurant sweep once.

Re-enriches up to N restaurants whose last_synced_at is missing or older
than the threshold, pausing 2-4 seconds between restaurants, then prints a
per-restaurant summary. Meant for cron / scheduled function invocation.

Usage:
    python scripts/run_stale_sweep.py
    python scripts/run_stale_sweep.py --batch-size 5 --csv sweep_report.csv
    python scripts/run_stale_sweep.py --mock-providers

Requirements:
    - Supabase credentials in config/secrets.toml or SUPABASE_URL / SUPABASE_KEY
    - Provider API keys (YELP_API_KEY, OPENTABLE_API_KEY), or --mock-providers
"""

import asyncio
import json
import sys
from pathlib import Path

# Add project root to path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from bite_core.api import ProviderRegistry
from bite_core.config import load_settings
from bite_core.data import BackendClient
from bite_core.logging import setup_logging
from bite_core.services import EnrichmentService, StaleSweepJob


async def run_sweep(batch_size=None, threshold_days=None, mock_providers=False):
    settings = load_settings()
    backend = BackendClient.from_settings(settings)
    registry = ProviderRegistry(settings, use_mocks=mock_providers)

    enrichment = EnrichmentService(
        registry.enrichment_connectors(),
        backend=backend,
        provider_timeout=settings.provider_timeout,
    )
    job = StaleSweepJob(
        backend,
        enrichment,
        batch_size=batch_size or settings.sweep_batch_size,
        threshold_days=threshold_days or settings.sweep_threshold_days,
        min_delay=settings.sweep_min_delay,
        max_delay=settings.sweep_max_delay,
    )
    job.set_progress_callback(lambda pct, msg: print(f"   [{pct:3d}%] {msg}"))

    try:
        return await job.run()
    finally:
        registry.close()


def print_report(report):
    print("=" * 60)
    print("🧹 STALE SWEEP SUMMARY")
    print("=" * 60)
    for item in report.items:
        marker = "✅" if item.success else "❌"
        detail = "" if item.success else f" - {item.error}"
        print(f"{marker} {item.restaurant_name or item.restaurant_id}{detail}")
    print("-" * 60)
    print(f"✅ Refreshed: {report.success_count}")
    print(f"❌ Failed: {report.failure_count}")
    print(f"📁 Total: {report.total}")
    print(f"⏱️  Duration: {report.duration_seconds:.1f}s")
    print("=" * 60)


# =============================================================================
# MAIN
# =============================================================================

if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Refresh stale restaurant enrichment data")
    parser.add_argument("--batch-size", type=int, help="Restaurants per run (default from settings)")
    parser.add_argument("--threshold-days", type=int, help="Age that counts as stale")
    parser.add_argument("--mock-providers", action="store_true", help="Use mock providers when keys are missing")
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    parser.add_argument("--csv", type=Path, help="Also write per-item results to this CSV file")
    parser.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING)")
    parser.add_argument("--log-file", action="store_true", help="Also log to logs/sweep_<date>.log")
    args = parser.parse_args()

    setup_logging(args.log_level, log_to_file=args.log_file)
    report = asyncio.run(run_sweep(args.batch_size, args.threshold_days, args.mock_providers))

    if args.json:
        print(json.dumps(report.to_dict(), indent=2, default=str))
    else:
        print_report(report)

    if args.csv:
        report.to_dataframe().to_csv(args.csv, index=False)
        print(f"📄 Wrote {args.csv}")

    sys.exit(0 if report.failure_count == 0 else 1)
