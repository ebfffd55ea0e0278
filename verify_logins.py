"""
Bulk credential check: log every account in, each in its own fresh browser
context, and report which ones fail.

Usage:
    python verify_logins.py --emails a@example.com,b@example.com --password secret
    python verify_logins.py --file accounts.txt --report reports/login_report.json
"""
import argparse
import json
import logging
import os
import sys
from dataclasses import asdict
from functools import partial
from pathlib import Path

from crm_e2e import config
from crm_e2e.actions import launch_browser, verify_logins
from crm_e2e.retry import RetryConfig

logger = logging.getLogger("verify_logins")


def _load_emails(args):
    emails = []
    if args.emails:
        emails.extend(v.strip() for v in args.emails.split(",") if v.strip())
    if args.file:
        for line in Path(args.file).read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if line and not line.startswith("#"):
                emails.append(line)
    return emails


def main(argv=None):
    parser = argparse.ArgumentParser(description="Verify that a list of CRM accounts can log in")
    parser.add_argument("--emails", help="Comma-separated email addresses")
    parser.add_argument("--file", help="Text file with one email per line ('#' starts a comment)")
    parser.add_argument(
        "--password",
        default=os.getenv("BULK_LOGIN_PASSWORD", config.TEST_PASSWORD),
        help="Shared password (default: BULK_LOGIN_PASSWORD or TEST_PASSWORD)",
    )
    parser.add_argument("--base-url", default=config.BASE_URL, help="CRM base URL")
    parser.add_argument("--batch-size", type=int, default=config.BULK_LOGIN_BATCH_SIZE)
    parser.add_argument("--stagger-ms", type=int, default=config.BULK_LOGIN_STAGGER_MS)
    parser.add_argument("--batch-pause-ms", type=int, default=config.BULK_LOGIN_BATCH_PAUSE_MS)
    parser.add_argument("--headed", action="store_true", help="Show the browser window")
    parser.add_argument("--report", help="Write the result as JSON to this path")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s [%(levelname)8s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )

    emails = _load_emails(args)
    if not emails:
        parser.error("no accounts given, use --emails and/or --file")

    open_browser = partial(launch_browser, headless=not args.headed, channel=config.BROWSER_CHANNEL)
    report = verify_logins(
        open_browser, emails, args.password,
        base_url=args.base_url,
        retry_config=RetryConfig.from_env(),
        batch_size=args.batch_size,
        stagger_ms=args.stagger_ms,
        batch_pause_ms=args.batch_pause_ms,
    )

    print("\n" + "=" * 80)
    print(f"Successful logins: {len(report.successful)}/{report.total}")
    for failure in report.failed:
        print(f"  [X] {failure.email}: {failure.reason}")
    print("=" * 80)

    if args.report:
        out = Path(args.report)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(json.dumps({
            "total": report.total,
            "successful": report.successful,
            "failed": [asdict(f) for f in report.failed],
        }, indent=2), encoding="utf-8")
        logger.info(f"Report written to {out}")

    return 0 if not report.failed else 1


if __name__ == "__main__":
    sys.exit(main())
