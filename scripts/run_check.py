"""Run the credit check and print the report JSON to stdout.

Usage:
    python -m scripts.run_check [--config PATH] [--output PATH] [--post] [--dry-run]
    # pipe into Slack posting:
    python -m scripts.run_check | python -m scripts.post_alerts
"""

import sys

from credit_check.cli import main

if __name__ == "__main__":
    sys.exit(main(["check", *sys.argv[1:]]))
