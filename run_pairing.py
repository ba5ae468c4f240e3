#!/usr/bin/env python3
"""
Photo Pairing Engine CLI
Pairs a batch of pre-extracted image features into front/back products.

Input is a JSON file holding either a list of feature rows or an object
``{"features": [...], "thresholds": {...}}``.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import pandas as pd

from photo_pairing.models.schemas import FeatureRow, PairingThresholds
from photo_pairing.services.config import (
    load_settings_from_env,
    load_thresholds_from_env,
    model_assist_configured,
)
from photo_pairing.services.disambiguator import LLMDisambiguator
from photo_pairing.services.invariants import PairingError
from photo_pairing.services.pipeline import PairingRun, run_pairing_sync


# ============================================================================
# Logging Setup
# ============================================================================

def setup_logging(output_dir: Path) -> logging.Logger:
    """Configure logging to both console and file."""
    output_dir.mkdir(parents=True, exist_ok=True)
    log_file = output_dir / "pairing_log.txt"

    # Package logger, so every stage's module logger lands here too
    logger = logging.getLogger("photo_pairing")
    logger.setLevel(logging.DEBUG)

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_formatter = logging.Formatter(
        '%(asctime)s | %(levelname)s | %(message)s',
        datefmt='%H:%M:%S'
    )
    console_handler.setFormatter(console_formatter)

    # File handler
    file_handler = logging.FileHandler(log_file, mode='w')
    file_handler.setLevel(logging.DEBUG)
    file_formatter = logging.Formatter(
        '%(asctime)s | %(levelname)s | %(name)s:%(lineno)d | %(message)s'
    )
    file_handler.setFormatter(file_formatter)

    logger.addHandler(console_handler)
    logger.addHandler(file_handler)

    return logger


# ============================================================================
# Input / Output
# ============================================================================

def load_features(path: Path) -> Tuple[List[FeatureRow], Optional[PairingThresholds]]:
    """Read feature rows (and optional thresholds) from a JSON file."""
    with open(path, encoding="utf-8") as f:
        payload = json.load(f)

    thresholds = None
    if isinstance(payload, dict):
        if payload.get("thresholds"):
            thresholds = PairingThresholds.model_validate(payload["thresholds"])
        payload = payload.get("features", [])

    if not isinstance(payload, list):
        raise ValueError(f"{path}: expected a list of feature rows")

    return [FeatureRow.model_validate(row) for row in payload], thresholds


def products_frame(run: PairingRun) -> pd.DataFrame:
    """One row per product group plus one per remaining singleton."""
    records = []
    for group in run.result.products:
        ev = group.evidence
        records.append({
            'product_id': group.product_id,
            'front_url': group.front_url,
            'back_url': group.back_url,
            'extras': ";".join(group.extras),
            'brand': ev.brand,
            'product': ev.product,
            'variant': ev.variant or "",
            'match_score': ev.match_score,
            'confidence': ev.confidence,
            'triggers': ";".join(ev.triggers),
            'gap': ev.gap
        })
    for row in run.result.remaining_singletons:
        records.append({
            'product_id': "",
            'front_url': row.url,
            'back_url': "",
            'extras': "",
            'brand': row.brand_norm,
            'product': " ".join(row.product_tokens),
            'variant': " ".join(row.variant_tokens),
            'match_score': None,
            'confidence': None,
            'triggers': "singleton",
            'gap': None
        })
    return pd.DataFrame(records, columns=[
        'product_id', 'front_url', 'back_url', 'extras', 'brand', 'product',
        'variant', 'match_score', 'confidence', 'triggers', 'gap'
    ])


def save_results(run: PairingRun, output_dir: Path, logger: logging.Logger) -> None:
    """Write result.json, metrics.json and products.csv."""
    output_dir.mkdir(parents=True, exist_ok=True)

    result_path = output_dir / "result.json"
    result_path.write_text(run.result.model_dump_json(by_alias=True, indent=2), encoding="utf-8")

    metrics_path = output_dir / "metrics.json"
    metrics_path.write_text(run.metrics.model_dump_json(by_alias=True, indent=2), encoding="utf-8")

    csv_path = output_dir / "products.csv"
    products_frame(run).to_csv(csv_path, index=False)

    logger.info(f"Results saved to: {output_dir}")


def log_summary(run: PairingRun, logger: logging.Logger) -> None:
    t = run.metrics.totals
    logger.info("=" * 80)
    logger.info("PAIRING SUMMARY")
    logger.info("=" * 80)
    logger.info(f"Images:        {t.images} ({t.fronts} fronts, {t.backs} back/other)")
    logger.info(f"Auto pairs:    {t.auto_pairs}")
    logger.info(f"Model pairs:   {t.model_pairs}")
    logger.info(f"Solo products: {run.metrics.resolution.solo_promotions}")
    logger.info(f"Extras:        {run.metrics.resolution.extras_attached}")
    logger.info(f"Singletons:    {t.singletons}")
    logger.info(f"Reasons:       {run.metrics.reasons}")
    logger.info(f"Duration:      {run.metrics.duration_ms}ms")
    logger.info("=" * 80)


# ============================================================================
# Main CLI
# ============================================================================

def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Photo Pairing Engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_pairing.py --features data/features.json
  python run_pairing.py --features data/features.json --out results/ --no-model
  PAIR_AUTO_GAP=1.0 python run_pairing.py --features data/features.json
        """
    )

    parser.add_argument(
        '--features',
        type=str,
        required=True,
        help='Path to the feature rows JSON file'
    )
    parser.add_argument(
        '--out',
        type=str,
        default='output/',
        help='Output directory (default: output/)'
    )
    parser.add_argument(
        '--no-model',
        action='store_true',
        help='Decline ambiguous fronts instead of asking the model'
    )
    parser.add_argument(
        '--model',
        type=str,
        default=None,
        help='Model used for disambiguation (default: PAIR_MODEL or claude-3-haiku-20240307)'
    )

    return parser.parse_args(argv)


def main(argv=None):
    """Main execution function."""
    args = parse_args(argv)

    features_path = Path(args.features)
    output_dir = Path(args.out)

    if not features_path.exists():
        print(f"Error: features file not found: {features_path}")
        sys.exit(1)

    logger = setup_logging(output_dir)
    logger.info("=" * 80)
    logger.info("PHOTO PAIRING ENGINE")
    logger.info("=" * 80)
    logger.info(f"Features: {features_path}")
    logger.info(f"Output:   {output_dir}")

    try:
        rows, file_thresholds = load_features(features_path)
        thresholds = load_thresholds_from_env(base=file_thresholds)

        settings = load_settings_from_env()
        if args.model:
            settings = settings.model_copy(update={"model": args.model})
        if args.no_model:
            settings = settings.model_copy(update={"model_assist_enabled": False})

        disambiguator = None
        if settings.model_assist_enabled and model_assist_configured():
            disambiguator = LLMDisambiguator(model=settings.model)
        logger.info(f"Model assist: {settings.model if disambiguator else 'off'}")
        logger.info("=" * 80)

        run = run_pairing_sync(rows, thresholds, disambiguator, settings)

        log_summary(run, logger)
        save_results(run, output_dir, logger)

        logger.info("Pairing completed successfully")

    except (PairingError, ValueError) as e:
        logger.error(f"Error during pairing: {str(e)}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
