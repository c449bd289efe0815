# commfund/triggers.py
"""
Wires committed donation writes to the campaign aggregator.

``DONATION_AGGREGATION_MODE`` picks the transport:

- ``inline``      apply in the committing thread, right after commit
- ``background``  hand off to the shared thread pool (``run_bg``)
- ``celery``      enqueue ``commfund.tasks.aggregate_donation_write``
- ``off``         do nothing (rely on the recompute sweep)

Whatever the transport, a failure is logged and the event dropped; the
donation write itself has already committed and is never affected.
"""

from __future__ import annotations

import logging
from typing import Any

from flask import Flask, current_app, has_app_context

from commfund.extensions import donation_written, run_bg
from commfund.services.aggregation import AggregationResult, apply_donation_write
from commfund.services.snapshots import DonationWrite

log = logging.getLogger(__name__)

AGGREGATION_MODES = ("inline", "background", "celery", "off")


def handle_donation_write(write: DonationWrite) -> AggregationResult:
    """Run the aggregator for one write, logging instead of raising."""
    try:
        result = apply_donation_write(write.before, write.after)
    except Exception:
        log.exception(
            "aggregation failed for donation %s (%s); event dropped",
            write.donation_id,
            write.kind,
        )
        return AggregationResult(applied=False, skipped_reason="error")

    if result.applied:
        log.debug(
            "aggregation: donation %s %s -> campaign %s total=%s donors=%s",
            write.donation_id,
            write.kind,
            result.campaign_id,
            result.state.total_donated if result.state else None,
            result.state.donors_count if result.state else None,
        )
    return result


def _run_in_app(app: Flask, write: DonationWrite) -> None:
    with app.app_context():
        handle_donation_write(write)


def _enqueue_celery(write: DonationWrite) -> None:
    from commfund.tasks import aggregate_donation_write

    try:
        aggregate_donation_write.delay(write.to_dict())
    except Exception:
        log.exception("aggregation: could not enqueue donation %s; event dropped", write.donation_id)


def _on_donation_written(sender: Any, write: DonationWrite, **_: Any) -> None:
    if write.before is not None and write.before == write.after:
        return

    if not has_app_context():
        log.warning("aggregation: donation %s committed outside an app context; skipped", write.donation_id)
        return

    mode = str(current_app.config.get("DONATION_AGGREGATION_MODE", "inline")).lower()
    if mode == "off":
        return
    if mode == "background":
        run_bg(_run_in_app, current_app._get_current_object(), write)
    elif mode == "celery":
        _enqueue_celery(write)
    else:
        handle_donation_write(write)


def init_triggers(app: Flask) -> None:
    mode = str(app.config.get("DONATION_AGGREGATION_MODE", "inline")).lower()
    if mode not in AGGREGATION_MODES:
        raise RuntimeError(
            f"DONATION_AGGREGATION_MODE must be one of {', '.join(AGGREGATION_MODES)}; got {mode!r}"
        )
    donation_written.connect(_on_donation_written, weak=False)
    app.logger.info("donation aggregation mode: %s", mode)
