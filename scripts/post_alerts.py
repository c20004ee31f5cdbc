"""Post alerts from a credit check report (read from stdin) to Slack.

Usage:
    python -m scripts.post_alerts [--input PATH] [--dry-run] < report.json
"""

import sys

from credit_check.cli import main

if __name__ == "__main__":
    sys.exit(main(["post", *sys.argv[1:]]))
