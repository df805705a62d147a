#!/usr/bin/env python3
"""
set_rule_track.py

Set the Track (logging) option of access rules on a management server via
its web API, then publish or discard the session.

Policy is never installed: after publishing, install the package on its
gateways from SmartConsole.

Usage:
  python set_rule_track.py -s 10.0.0.5 -u admin --package Standard \\
      --rule-indices 1,3,5 --track-type extended --per-connection --publish
  python set_rule_track.py -i
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from mgmt_api import MgmtApiClient
from prompts import PromptCancelled, Prompter
from rule_select import RuleSelection, split_list
from track_spec import accepted_forms
from track_workflow import RunConfig, TrackWorkflow, write_report

# ----------------- config -----------------
ENV_SERVER = os.getenv("CP_MGMT_SERVER")
ENV_PORT = int(os.getenv("CP_MGMT_PORT", "443"))
ENV_USER = os.getenv("CP_MGMT_USER")
ENV_PASSWORD = os.getenv("CP_MGMT_PASSWORD")
ENV_DOMAIN = os.getenv("CP_MGMT_DOMAIN")
VERIFY_SSL = os.getenv("VERIFY_SSL", "false").lower() == "true"
TIMEOUT = int(os.getenv("REQUEST_TIMEOUT", "20"))
LOG_FILE = os.getenv("SET_RULE_TRACK_LOG", "set_rule_track.log")


def setup_logger(log_path: Path, quiet: bool = False) -> logging.Logger:
    log_path.parent.mkdir(parents=True, exist_ok=True)
    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()

    fh = logging.FileHandler(log_path, encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    logger.addHandler(fh)

    sh = logging.StreamHandler(sys.stdout)
    sh.setLevel(logging.WARNING if quiet else logging.INFO)
    sh.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    logger.addHandler(sh)

    # requests/urllib3 debug lines go to the file only
    logging.getLogger("urllib3").setLevel(logging.INFO)
    return logger


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Set the track option of access rules and publish the session.")
    conn = ap.add_argument_group("connection")
    conn.add_argument("-s", "--server", default=ENV_SERVER, help="Management server address (env CP_MGMT_SERVER)")
    conn.add_argument("--port", type=int, default=ENV_PORT, help="Web API port (default 443)")
    conn.add_argument("-u", "--user", default=ENV_USER, help="Username (env CP_MGMT_USER)")
    conn.add_argument("-p", "--password", default=ENV_PASSWORD, help="Password (env CP_MGMT_PASSWORD)")
    conn.add_argument("-d", "--domain", default=ENV_DOMAIN, help="Domain to log in to (multi-domain servers)")
    conn.add_argument("--verify-ssl", action="store_true", default=VERIFY_SSL, help="Validate the server TLS certificate")
    conn.add_argument("--timeout", type=float, default=TIMEOUT, help="Per-request timeout in seconds (default 20)")
    conn.add_argument("--session-name", help="Name for the editing session shown in SmartConsole")

    sel = ap.add_argument_group("selection")
    sel.add_argument("--package", help="Policy package name")
    sel.add_argument("--layer", help="Access layer name (optional when the package has one layer)")
    sel.add_argument("--all-rules", action="store_true", help="Update every rule in the layer")
    sel.add_argument("--rule-indices", help="Comma-separated 1-based rule numbers, e.g. 1,3,5")
    sel.add_argument("--rule-names", help="Comma-separated rule names")

    trk = ap.add_argument_group("track")
    trk.add_argument("--track-type", help="One of: " + ", ".join(accepted_forms()))
    for flag, dest in (("accounting", "accounting"), ("per-connection", "per_connection"), ("per-session", "per_session")):
        trk.add_argument(f"--{flag}", dest=dest, action="store_const", const=True, default=None, help=f"Enable {flag}")
        trk.add_argument(f"--no-{flag}", dest=dest, action="store_const", const=False, help=f"Disable {flag}")

    run = ap.add_argument_group("run")
    run.add_argument("--publish", action="store_true", help="Publish the changes (asks first in interactive mode)")
    run.add_argument("--auto-publish", action="store_true", help="Publish without asking")
    run.add_argument("-i", "--interactive", action="store_true", help="Prompt for anything not given")
    run.add_argument("-q", "--quiet", action="store_true", help="Only print warnings and errors")
    run.add_argument("--dry-run", action="store_true", help="Show what would change without changing anything")
    run.add_argument("--log-file", default=LOG_FILE, help="Log file path (env SET_RULE_TRACK_LOG)")
    run.add_argument("--report", help="Write a JSON report of the run to this path")
    return ap


def config_from_args(args: argparse.Namespace) -> RunConfig:
    return RunConfig(
        server=args.server,
        user=args.user,
        password=args.password,
        port=args.port,
        domain=args.domain,
        package=args.package,
        layer=args.layer,
        selection=RuleSelection(
            all_rules=args.all_rules,
            indices=split_list(args.rule_indices),
            names=split_list(args.rule_names),
        ),
        track_type=args.track_type,
        accounting=args.accounting,
        per_connection=args.per_connection,
        per_session=args.per_session,
        publish=args.publish,
        auto_publish=args.auto_publish,
        interactive=args.interactive,
        quiet=args.quiet,
        dry_run=args.dry_run,
        verify_ssl=args.verify_ssl,
        timeout=args.timeout,
        session_name=args.session_name,
        report_path=args.report,
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logger = setup_logger(Path(args.log_file).expanduser(), quiet=args.quiet)
    config = config_from_args(args)
    prompter = Prompter() if config.interactive else None

    if not config.server:
        if prompter is None:
            logger.error("No management server given (use --server or CP_MGMT_SERVER)")
            return 1
        try:
            config.server = prompter.ask("Management server")
        except PromptCancelled:
            return 1
        if not config.server:
            logger.error("No management server given")
            return 1

    client = MgmtApiClient(config.server, port=config.port, verify_ssl=config.verify_ssl, timeout=config.timeout)
    try:
        result = TrackWorkflow(client, config, prompter=prompter).run()
    except KeyboardInterrupt:
        logger.error("Interrupted")
        return 1

    if config.report_path:
        write_report(config.report_path, result)
        logger.info("Wrote report: %s", config.report_path)

    if result.total and not config.dry_run:
        logger.info("Result: %d of %d rule(s) updated; %s", result.success_count, result.total,
                    "published" if result.published else "NOT published")
    return result.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
