#!/usr/bin/env python3
"""
Mixpanel job runner

Runs one Mixpanel operation over a list of input items described in a job file.

Job file (JSON):
- resource: event, profile, group, query, cohort, export or lookupTable
- operation: e.g. track, trackBatch, import, set, rawEvents
- items: list of parameter objects, one per item
- continue_on_fail: report failing items instead of stopping (default: false)
- output_file: where to write results as JSON lines (default: stdout)

Credentials come from the environment (MIXPANEL_PROJECT_TOKEN,
MIXPANEL_PROJECT_SECRET, ...), optionally loaded from a .env file.

Usage:
    python main.py job.json
"""

import json
import logging
import sys

from dotenv import load_dotenv

from mixpanel_driver import MixpanelDriver, NoticeState, DriverError, run_job

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def load_job(path):
    """Read and validate the job file"""
    with open(path, 'r') as f:
        job = json.load(f)

    for key in ("resource", "operation"):
        if not job.get(key):
            raise ValueError(f"Job file is missing '{key}'")

    items = job.get("items", [{}])
    if not isinstance(items, list):
        raise ValueError("'items' must be a list")
    job["items"] = items
    return job


def write_results(records, output_file=None):
    """Write output records as JSON lines"""
    if output_file:
        with open(output_file, 'w') as f:
            for record in records:
                f.write(json.dumps(record) + '\n')
        logger.info(f"Wrote {len(records)} records to {output_file}")
    else:
        for record in records:
            print(json.dumps(record))


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    if not argv:
        logger.error("Usage: python main.py <job.json>")
        return 2

    load_dotenv()
    notice = NoticeState()

    try:
        job = load_job(argv[0])
    except (OSError, ValueError) as e:
        logger.error(f"Invalid job file: {e}")
        return 2

    try:
        with MixpanelDriver.from_env() as client:
            records = run_job(
                client,
                job["resource"],
                job["operation"],
                job["items"],
                continue_on_fail=bool(job.get("continue_on_fail", False)),
                notice=notice,
            )
    except DriverError as e:
        logger.error(f"{e}")
        if e.details:
            logger.error(f"Details: {json.dumps(e.details, default=str)}")
        return 1

    write_results(records, job.get("output_file"))
    logger.info(f"Job {job['resource']}.{job['operation']} finished: {len(records)} records")
    return 0


if __name__ == "__main__":
    sys.exit(main())
