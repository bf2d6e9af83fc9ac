# tagspeed.py
import argparse
import asyncio
import json
import logging
import signal
import sys
from datetime import datetime, timezone

import config
import config_string
from discovery import identify_third_parties
from execution import (
    DEVICE_PROFILES,
    NETWORK_PROFILES,
    STATUS_ERROR,
    STATUS_RUNNING,
    AuditResponse,
    ExecutionRecord,
)
from execution_store import ExecutionStore
from measurement_driver import PlaywrightDriver
from net_guardrails import redact_values, validate_url
from scheduler import AuditScheduler
from third_party import default_classifier

logger = logging.getLogger(__name__)

LABEL_WIDTH = 70


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Measure how each third-party request on a page affects Core Web Vitals."
    )
    sub = parser.add_subparsers(dest="command", required=True)

    def add_common(p):
        p.add_argument("url", help="Page to audit")
        p.add_argument("--user-agent", default="", help="User agent override")
        p.add_argument("--cookies", default="", help='Cookies as k=v;k2="v;2"')
        p.add_argument("--local-storage", default="", help="Local storage entries, same format as --cookies")
        p.add_argument("--device", choices=DEVICE_PROFILES, default=config.DEFAULT_DEVICE)
        p.add_argument("--network", choices=NETWORK_PROFILES, default=config.DEFAULT_NETWORK)
        p.add_argument("--json", dest="json_path", default=None, help="Write the outcome to this JSON file")

    run = sub.add_parser("run", help="Run the blocking audit")
    add_common(run)
    run.add_argument("--max-urls", type=int, default=-1, help="Max third-party URLs to try (-1 = all)")
    run.add_argument("--reports", type=int, default=config.DEFAULT_NUMBER_OF_REPORTS,
                     help="Measurements to average per scenario")
    run.add_argument("--block-all", action="store_true", help="Block every third party in a single scenario")
    run.add_argument("--block", action="append", default=None, metavar="URL",
                     help="Block only this URL (repeatable); skips discovery")

    disc = sub.add_parser("discover", help="List the third-party URLs a page loads")
    add_common(disc)
    return parser.parse_args(argv)


def build_record(args) -> ExecutionRecord:
    payload = {
        "url": args.url,
        "userAgentOverride": args.user_agent,
        "cookies": args.cookies,
        "localStorage": args.local_storage,
        "device": args.device,
        "network": args.network,
    }
    if args.command == "run":
        payload.update({
            "maxUrlsToTry": args.max_urls,
            "numberOfReports": args.reports,
            "blockAll": args.block_all,
            "blockSpecificUrls": args.block,
        })
    return ExecutionRecord.from_request(payload)


def format_result(result: AuditResponse, baseline: AuditResponse) -> str:
    is_baseline = result.id == baseline.id
    if is_baseline:
        label = "BASELINE"
    elif len(result.blocked_url) > LABEL_WIDTH:
        label = result.blocked_url[:LABEL_WIDTH] + "..."
    else:
        label = result.blocked_url
    delta = result.delta_baseline or {}

    def _fmt(name, unit=""):
        value = f"{getattr(result.scores, name)}{unit}"
        if not is_baseline and name in delta:
            value += f" ({delta[name]}%)"
        return value

    return (
        f"  {label}\n"
        f"    LCP {_fmt('LCP', ' s')} | FCP {_fmt('FCP', ' s')} | CLS {_fmt('CLS')} | "
        f"TBT {_fmt('TBT', ' ms')} | console errors {result.scores.consoleErrors}"
    )


def save_json(payload: dict, out_path: str) -> None:
    data = {
        "generated_at": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        **payload,
    }
    with open(out_path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)
    logger.info(f"Saved JSON: {out_path}")


def _install_cancel_handler(store: ExecutionStore, execution_id: str) -> None:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, store.cancel, execution_id)
    except (NotImplementedError, RuntimeError):
        # no signal handlers on this platform / outside the main thread
        pass


async def run_audit(args, driver=None, classifier=None, poll_interval=config.POLL_INTERVAL_S) -> int:
    record = build_record(args)
    store = ExecutionStore()
    driver = driver if driver is not None else PlaywrightDriver()
    classifier = classifier if classifier is not None else default_classifier()
    scheduler = AuditScheduler(driver, classifier, store)

    logger.debug(f"Cookies: {redact_values(config_string.parse(record.configuration.cookies))}")
    print(f"Auditing {record.url} (execution {record.id})")
    ack = await scheduler.start(record)
    if not ack.ok:
        print(f"  error: {ack.error}")
        return 1

    print(f"  expected results: {ack.expected_results}")
    _install_cancel_handler(store, record.id)
    printed: set[str] = set()
    while True:
        snapshot = store.status(record.id)
        results = snapshot.results
        for result in results:
            if result.id in printed:
                continue
            print(format_result(result, results[0]))
            printed.add(result.id)
        if snapshot.status != STATUS_RUNNING:
            break
        await asyncio.sleep(poll_interval)

    final = await scheduler.wait(record.id)
    if final.error:
        print(f"  error: {final.error}")
    print(f"Done: {final.status}, {len(final.results)}/{final.expected_results} results")
    if args.json_path:
        save_json(final.to_dict(), args.json_path)
    return 1 if final.status == STATUS_ERROR else 0


async def run_discover(args, driver=None, classifier=None) -> int:
    record = build_record(args)
    driver = driver if driver is not None else PlaywrightDriver()
    classifier = classifier if classifier is not None else default_classifier()
    urls = await identify_third_parties(driver, classifier, record)
    print(f"{len(urls)} third-party URL(s) on {record.url}")
    for url in urls:
        print(f"  {url}")
    if args.json_path:
        save_json({"url": record.url, "identifiedThirdParties": urls}, args.json_path)
    return 0


def main(argv=None):
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S"
    )
    args = parse_args(argv)
    validate_url(args.url)
    if args.command == "discover":
        return asyncio.run(run_discover(args))
    return asyncio.run(run_audit(args))


if __name__ == "__main__":
    try:
        sys.exit(main())
    except Exception as e:
        print(f"[FATAL] {type(e).__name__}: {e}", file=sys.stderr)
        sys.exit(2)
