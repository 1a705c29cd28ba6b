#!/usr/bin/env python3
"""
Main orchestration module for the Galop Watcher pipeline.

This module coordinates one run:
load batch → load state → reconcile → format → deliver/save

The batch comes from the external fetch step as a JSON file, and the
rendered messages go to a delivery callable. The runner decides in which
order delivery and persistence happen.
"""

import sys
import os
from datetime import datetime, timezone
from typing import Optional

from galop_watcher.utils import setup_logging, get_logger, load_config, WatcherConfig
from galop_watcher.records import InvalidRecordError, dedupe_batch
from galop_watcher.reconcile import (
    ReconcileOptions,
    reconcile,
    select_confirmed,
    status_prefix_predicate,
)
from galop_watcher.store import (
    BatchLoadError,
    load_batch,
    load_run_state,
    load_store,
    save_confirmed_snapshot,
    save_run_state,
    save_store,
)
from galop_watcher.period import current_period, is_first_of_period
from galop_watcher.notify import Deliver, DeliveryError, build_messages, log_sink


# Exit codes
EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_ENV_ERROR = 2
EXIT_DELIVERY_ERROR = 3
EXIT_INPUT_ERROR = 4


def persist_state(config: WatcherConfig, store, period: str, now: datetime) -> bool:
    """
    Save the store and the run state.

    Returns:
        True if both files were written.
    """
    store_saved = save_store(store, config.store_path, cap=config.store_cap)
    state_saved = save_run_state(config.run_state_path, period, now=now)
    return store_saved and state_saved


def run_pipeline(
    config: WatcherConfig,
    deliver: Deliver = log_sink,
    now: Optional[datetime] = None
) -> int:
    """
    Execute one watcher run.

    Pipeline stages:
    1. Load the fetched batch
    2. Load the seen store and run state
    3. Reconcile the batch against the store
    4. Build the messages
    5. Deliver and persist, in the configured order

    With save_before_delivery off (the default) the store is only saved
    once delivery succeeded, so a failed delivery is retried on the next
    run. With it on, the store is saved first and a failed delivery is
    not retried.

    Args:
        config: Run configuration.
        deliver: Callable receiving the list of messages.
        now: Moment of the run, defaults to the current time.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    logger = get_logger("main")
    now = now or datetime.now(timezone.utc)
    # Naive datetimes are taken as UTC, never as host local time
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now_ms = int(now.timestamp() * 1000)

    logger.info("=" * 60)
    logger.info("Galop Watcher - Starting")
    logger.info("=" * 60)

    # Stage 1: Load batch
    logger.info("[Stage 1/5] Loading fetched batch...")
    try:
        batch = load_batch(config.batch_path)
    except BatchLoadError as e:
        logger.error(f"Cannot load batch: {e}")
        return EXIT_INPUT_ERROR

    if not batch:
        logger.warning("Fetched batch is empty")

    # Stage 2: Load state
    logger.info("[Stage 2/5] Loading previous state...")
    store = load_store(config.store_path)
    run_state = load_run_state(config.run_state_path)

    period = current_period(now, config.timezone)
    first_of_period = config.first_of_period or is_first_of_period(
        run_state.get("last_period"), now, config.timezone
    )
    is_confirmed = status_prefix_predicate(config.confirmed_prefix)

    # Stage 3: Reconcile
    logger.info("[Stage 3/5] Reconciling batch with seen store...")
    options = ReconcileOptions(
        force=config.force,
        is_first_of_period=first_of_period,
        is_confirmed_status=is_confirmed
    )

    try:
        result = reconcile(batch, store, options, now=now_ms)
    except InvalidRecordError as e:
        logger.error(f"Rejected batch: {e}")
        return EXIT_INPUT_ERROR

    if config.confirmed_snapshot_path:
        confirmed = select_confirmed(dedupe_batch(batch), is_confirmed)
        save_confirmed_snapshot(confirmed, config.confirmed_snapshot_path, now=now)

    if not result.has_updates:
        logger.info("No new, changed or confirmed entries - nothing to post")
        if not persist_state(config, result.store, period, now):
            return EXIT_FAILURE
        return EXIT_SUCCESS

    # Stage 4: Build messages
    logger.info("[Stage 4/5] Building messages...")
    messages = build_messages(result, period, budget=config.message_budget)

    # Stage 5: Deliver and persist
    logger.info("[Stage 5/5] Delivering messages...")
    if config.save_before_delivery:
        if not persist_state(config, result.store, period, now):
            return EXIT_FAILURE

    try:
        deliver(messages)
    except DeliveryError as e:
        logger.error(f"Delivery failed after {e.delivered}/{len(messages)} message(s): {e}")
        if config.save_before_delivery:
            logger.warning("Store already saved, undelivered messages will not be retried")
        else:
            logger.warning("Store not saved, entries will be reported again on next run")
        return EXIT_DELIVERY_ERROR

    if not config.save_before_delivery:
        if not persist_state(config, result.store, period, now):
            return EXIT_FAILURE

    summary = result.summary()
    logger.info("=" * 60)
    logger.info("Galop Watcher - Complete")
    logger.info(
        f"Summary: {summary['new_count']} new, {summary['changed_count']} changed, "
        f"{summary['confirmed_count']} confirmed, {len(messages)} message(s)"
    )
    logger.info("=" * 60)

    return EXIT_SUCCESS


def main() -> int:
    """
    Main entry point for the Galop Watcher pipeline.

    Sets up logging and runs the pipeline with proper error handling.

    Returns:
        Exit code for the process.
    """
    log_level = os.environ.get("LOG_LEVEL", "INFO").upper()

    setup_logging(log_level)
    logger = get_logger("main")

    try:
        config = load_config()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_ENV_ERROR

    if config.force:
        logger.info("FORCE_POST set - every current entry will be reported as new")

    try:
        return run_pipeline(config)

    except KeyboardInterrupt:
        logger.warning("Pipeline interrupted by user")
        return EXIT_FAILURE

    except Exception as e:
        logger.exception(f"Unexpected error in pipeline: {e}")
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
