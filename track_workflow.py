# track_workflow.py
# Python 3.8/3.9 compatible
"""
Session-scoped change/publish workflow for rule track settings.

One run: login, discard stale changes, pick package and layer, fetch and
select rules, validate the desired track on the first selected rule, apply
it to the rest, summarize, then publish or discard. Logout happens on every
path once a session exists, and pending changes are never left behind
unless a publish was submitted and failed.
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from tqdm import tqdm

from mgmt_api import MgmtApiClient, MgmtApiError
from prompts import PromptCancelled, Prompter
from rule_select import (
    AccessRule,
    RuleSelection,
    flatten_rulebase,
    parse_index_input,
    select_rules,
)
from task_poll import poll_task
from track_spec import TRACK_NONE, TrackSpec, TrackTypeError, normalize_track_type

logger = logging.getLogger(__name__)


class State(Enum):
    AUTHENTICATING = "authenticating"
    PACKAGE_SELECTED = "package-selected"
    LAYER_SELECTED = "layer-selected"
    RULES_FETCHED = "rules-fetched"
    RULES_SELECTED = "rules-selected"
    CONFIG_VALIDATING = "config-validating"
    CONFIG_APPLIED = "config-applied"
    SUMMARIZED = "summarized"
    RESOLVED = "resolved"
    LOGGED_OUT = "logged-out"


class WorkflowAbort(Exception):
    exit_code = 1

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class WorkflowError(WorkflowAbort):
    """Fatal: the run stops and exits non-zero."""
    exit_code = 1


class EarlyExit(WorkflowAbort):
    """Nothing to do: the run stops and exits zero."""
    exit_code = 0


@dataclass
class RunConfig:
    server: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    port: int = 443
    domain: Optional[str] = None
    package: Optional[str] = None
    layer: Optional[str] = None
    selection: RuleSelection = field(default_factory=RuleSelection)
    track_type: Optional[str] = None
    accounting: Optional[bool] = None
    per_connection: Optional[bool] = None
    per_session: Optional[bool] = None
    publish: bool = False
    auto_publish: bool = False
    interactive: bool = False
    quiet: bool = False
    dry_run: bool = False
    verify_ssl: bool = False
    timeout: float = 20
    session_name: Optional[str] = None
    report_path: Optional[str] = None

    def missing_required(self) -> List[str]:
        """Parameters a non-interactive run cannot do without."""
        missing = []
        if not self.server:
            missing.append("server")
        if not self.user:
            missing.append("user")
        if not self.password:
            missing.append("password")
        if not self.package:
            missing.append("package")
        if self.selection.is_empty():
            missing.append("rule selection (all / indices / names)")
        if not self.track_type:
            missing.append("track type")
        return missing


@dataclass
class RuleChange:
    rule: AccessRule
    before: str
    after: str
    ok: Optional[bool] = None
    error: Optional[str] = None

    @property
    def status(self) -> str:
        if self.ok is None:
            return "PLANNED"
        return "OK" if self.ok else "FAILED"


@dataclass
class RunResult:
    exit_code: int = 0
    state: State = State.AUTHENTICATING
    stopped_at: Optional[State] = None
    package: Optional[str] = None
    layer: Optional[str] = None
    desired: Optional[TrackSpec] = None
    changes: List[RuleChange] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    published: bool = False
    publish_status: Optional[str] = None
    message: str = ""

    @property
    def total(self) -> int:
        return len(self.changes)

    @property
    def success_count(self) -> int:
        return sum(1 for c in self.changes if c.ok)

    def to_report(self) -> Dict[str, Any]:
        return {
            "exit_code": self.exit_code,
            "state": self.state.value,
            "stopped_at": self.stopped_at.value if self.stopped_at else None,
            "package": self.package,
            "layer": self.layer,
            "desired_track": self.desired.to_payload() if self.desired else None,
            "success_count": self.success_count,
            "total": self.total,
            "published": self.published,
            "publish_status": self.publish_status,
            "skipped": self.skipped,
            "message": self.message,
            "rules": [
                {
                    "position": c.rule.position,
                    "name": c.rule.name,
                    "uid": c.rule.uid,
                    "before": c.before,
                    "after": c.after,
                    "status": c.status,
                    "error": c.error,
                }
                for c in self.changes
            ],
        }


def write_report(path: str, result: RunResult) -> None:
    tmp = path + ".tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(result.to_report(), f, indent=2)
        f.write("\n")
    os.replace(tmp, path)


class TrackWorkflow:
    def __init__(
        self,
        client: MgmtApiClient,
        config: RunConfig,
        prompter: Optional[Prompter] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.config = config
        self.prompter = prompter
        self.sleep = sleep

        self.sid: Optional[str] = None
        self.state = State.AUTHENTICATING
        self.resolved = False
        self.result = RunResult()

        self.rules: List[AccessRule] = []
        self.selected: List[AccessRule] = []
        self._user = config.user
        self._password = config.password
        self._reconfigure = False

        self._handlers: Dict[State, Callable[[], State]] = {
            State.AUTHENTICATING: self._authenticate,
            State.PACKAGE_SELECTED: self._select_layer,
            State.LAYER_SELECTED: self._fetch_rules,
            State.RULES_FETCHED: self._select_rules,
            State.RULES_SELECTED: self._configure,
            State.CONFIG_VALIDATING: self._validate,
            State.CONFIG_APPLIED: self._apply_remaining,
            State.SUMMARIZED: self._resolve,
        }

    # ----------------- driver -----------------

    def run(self) -> RunResult:
        try:
            self._preflight()
            while self.state is not State.RESOLVED:
                self.state = self._handlers[self.state]()
        except WorkflowAbort as e:
            if e.exit_code:
                logger.error(e.message)
            else:
                logger.info(e.message)
            self.result.exit_code = e.exit_code
            self.result.message = e.message
            self.result.stopped_at = self.state
        except MgmtApiError as e:
            logger.error("Management API call failed: %s", e)
            self.result.exit_code = 1
            self.result.message = str(e)
            self.result.stopped_at = self.state
        except PromptCancelled as e:
            logger.error("Cancelled: %s", e)
            self.result.exit_code = 1
            self.result.message = "cancelled"
            self.result.stopped_at = self.state
        finally:
            self._cleanup()
        self.result.state = self.state
        return self.result

    def _preflight(self) -> None:
        cfg = self.config
        if cfg.track_type is not None:
            try:
                normalize_track_type(cfg.track_type)
            except TrackTypeError as e:
                raise WorkflowError(str(e)) from e

        if self.prompter is None:
            missing = cfg.missing_required()
            if missing:
                raise WorkflowError("Missing required parameter(s): " + ", ".join(missing))
            return

        if not self._user:
            self._user = self.prompter.ask("Username")
        if not self._password:
            self._password = self.prompter.ask_secret("Password")
        if not self._user or not self._password:
            raise WorkflowError("Username and password are required")

    def _cleanup(self) -> None:
        if self.sid is None:
            self.state = State.LOGGED_OUT
            return
        if not self.resolved:
            self._discard("Discarding pending changes")
            self.resolved = True
        try:
            self.client.logout(self.sid)
            logger.info("Logged out")
        except MgmtApiError as e:
            logger.warning("Logout failed: %s", e)
        self.sid = None
        self.state = State.LOGGED_OUT

    def _discard(self, reason: str) -> None:
        logger.info(reason)
        try:
            self.client.discard(self.sid)
        except MgmtApiError as e:
            logger.warning("Discard failed: %s", e)

    def _pick(self, kind: str, names: List[str], explicit: Optional[str], auto_single: bool = False) -> str:
        if explicit:
            if explicit not in names:
                raise WorkflowError(f"{kind.capitalize()} {explicit!r} not found. Available: {', '.join(names)}")
            return explicit
        if auto_single and len(names) == 1:
            logger.info("Using the only %s: %s", kind, names[0])
            return names[0]
        if self.prompter is None:
            raise WorkflowError(f"No {kind} given and several are available: {', '.join(names)}")
        return names[self.prompter.choose(f"Available {kind}s:", names)]

    # ----------------- states -----------------

    def _authenticate(self) -> State:
        cfg = self.config
        try:
            self.sid = self.client.login(
                self._user,
                self._password,
                domain=cfg.domain,
                session_name=cfg.session_name,
                session_description="Rule track update" if cfg.session_name else None,
            )
        except MgmtApiError as e:
            raise WorkflowError(f"Login to {cfg.server} failed: {e}") from e
        logger.info("Logged in to %s as %s", cfg.server, self._user)

        # leftovers from an earlier interrupted run would hold locks
        self._discard("Discarding any stale pending changes")

        packages = self.client.show_packages(self.sid)
        names = [p["name"] for p in packages if isinstance(p, dict) and p.get("name")]
        if not names:
            raise WorkflowError("No policy packages found on the server")
        self.result.package = self._pick("package", names, cfg.package)
        logger.info("Package: %s", self.result.package)
        return State.PACKAGE_SELECTED

    def _select_layer(self) -> State:
        pkg = self.client.show_package(self.sid, self.result.package)
        layers = [
            l["name"] for l in (pkg.get("access-layers") or [])
            if isinstance(l, dict) and l.get("name")
        ]
        if not layers:
            raise WorkflowError(f"Package {self.result.package!r} has no access layers")
        self.result.layer = self._pick("layer", layers, self.config.layer, auto_single=True)
        logger.info("Access layer: %s", self.result.layer)
        return State.LAYER_SELECTED

    def _fetch_rules(self) -> State:
        data = self.client.show_access_rulebase(self.sid, self.result.layer)
        self.rules = flatten_rulebase(data.get("rulebase") or [], data.get("objects-dictionary"))
        if not self.rules:
            raise EarlyExit(f"Layer {self.result.layer!r} has no rules; nothing to do")
        logger.info("Fetched %d rule(s) from %s", len(self.rules), self.result.layer)

        lines = [f"{r.position:>4}  {r.name or '(unnamed)':<40} {r.track.describe()}" for r in self.rules]
        for line in lines:
            logger.debug(line)
        if self.prompter is not None:
            print("\nRules:")
            print("\n".join(lines))
        return State.RULES_FETCHED

    def _select_rules(self) -> State:
        selection = self.config.selection
        if selection.is_empty():
            if self.prompter is None:
                raise WorkflowError("No rule selection given")
            selection = parse_index_input(self.prompter.ask("Rules to update (comma-separated numbers, or 'all')"))

        picked = select_rules(self.rules, selection)
        self.result.skipped = picked.skipped
        self.selected = picked.rules
        if not self.selected:
            raise EarlyExit("No rules selected; nothing to do")
        logger.info("Selected %d rule(s)", len(self.selected))
        return State.RULES_SELECTED

    def _configure(self) -> State:
        desired = self._ask_track() if self._reconfigure or not self.config.track_type else self._track_from_config()
        self.result.desired = desired
        logger.info("Desired track: %s", desired.describe())

        if self.config.dry_run:
            after = desired.describe()
            self.result.changes = [RuleChange(r, r.track.describe(), after) for r in self.selected]
            self._log_summary()
            raise EarlyExit("Dry run: no rules were changed")
        return State.CONFIG_VALIDATING

    def _validate(self) -> State:
        first = self.selected[0]
        desired = self.result.desired
        try:
            self.client.set_access_rule(self.sid, self.result.layer, first.uid, desired.to_payload())
        except MgmtApiError as e:
            logger.error("Server rejected track %s on rule %s: %s", desired.describe(), first.label(), e)
            if self.prompter is not None and self.prompter.confirm("Try a different track configuration?", default=True):
                self._reconfigure = True
                return State.RULES_SELECTED
            raise WorkflowError(f"Track configuration rejected on rule {first.label()}: {e}") from e

        logger.info("Track accepted on rule %s", first.label())
        self.result.changes = [RuleChange(first, first.track.describe(), desired.describe(), ok=True)]
        return State.CONFIG_APPLIED

    def _apply_remaining(self) -> State:
        desired = self.result.desired
        payload = desired.to_payload()
        rest = self.selected[1:]
        for rule in tqdm(rest, desc="Rules", unit="rule", disable=self.config.quiet or not rest):
            change = RuleChange(rule, rule.track.describe(), desired.describe())
            try:
                self.client.set_access_rule(self.sid, self.result.layer, rule.uid, payload)
                change.ok = True
            except MgmtApiError as e:
                change.ok = False
                change.error = str(e)
                logger.error("Updating rule %s failed: %s", rule.label(), e)
            self.result.changes.append(change)

        self._log_summary()
        return State.SUMMARIZED

    def _resolve(self) -> State:
        if self._publish_requested():
            self._publish()
        else:
            self._discard("Publish not requested; discarding pending changes")
            self.resolved = True
            self.result.exit_code = 0
            self.result.message = "Changes discarded (not published)"
            logger.warning("Changes were discarded and NOT published")
        return State.RESOLVED

    # ----------------- helpers -----------------

    def _track_from_config(self) -> TrackSpec:
        cfg = self.config
        track_type = normalize_track_type(cfg.track_type)
        if self.prompter is not None and track_type != TRACK_NONE:
            return TrackSpec(
                type=track_type,
                accounting=self._flag("Enable accounting?", cfg.accounting),
                per_connection=self._flag("Log per connection?", cfg.per_connection),
                per_session=self._flag("Log per session?", cfg.per_session),
            )
        return TrackSpec(
            type=track_type,
            accounting=bool(cfg.accounting),
            per_connection=bool(cfg.per_connection),
            per_session=bool(cfg.per_session),
        )

    def _flag(self, question: str, preset: Optional[bool]) -> bool:
        if preset is not None:
            return preset
        return self.prompter.confirm(question, default=False)

    def _ask_track(self) -> TrackSpec:
        if self.prompter is None:
            raise WorkflowError("No track type given")
        while True:
            text = self.prompter.ask("Track type (none, log, detailed log, extended log)")
            try:
                track_type = normalize_track_type(text)
                break
            except TrackTypeError as e:
                print(e)
        if track_type == TRACK_NONE:
            return TrackSpec(type=track_type)
        return TrackSpec(
            type=track_type,
            accounting=self.prompter.confirm("Enable accounting?", default=False),
            per_connection=self.prompter.confirm("Log per connection?", default=False),
            per_session=self.prompter.confirm("Log per session?", default=False),
        )

    def _publish_requested(self) -> bool:
        cfg = self.config
        if cfg.auto_publish:
            return True
        if self.prompter is not None:
            return self.prompter.confirm("Publish the changes now?", default=cfg.publish)
        return cfg.publish

    def _publish(self) -> None:
        # once submitted, pending changes are left for the operator on failure
        self.resolved = True
        try:
            task_id = self.client.publish(self.sid)
        except MgmtApiError as e:
            self._publish_failed(f"publish rejected: {e}")
            return

        if task_id:
            logger.info("Publish task %s submitted", task_id)
            with tqdm(total=100, desc="Publish", unit="%", disable=self.config.quiet) as bar:
                def show(status: str, progress: int) -> None:
                    bar.set_postfix_str(status)
                    bar.update(max(0, min(progress, 100) - bar.n))

                task = poll_task(self.client, self.sid, task_id, sleep=self.sleep, on_progress=show)
            self.result.publish_status = task.status
            if not task.success:
                self._publish_failed(task.error or f"publish task {task.status}")
                return
        else:
            self.result.publish_status = "succeeded"

        self.result.published = True
        self.result.exit_code = 0
        self.result.message = "Changes published"
        logger.info(
            "Changes published. Policy was NOT installed: install package %r on its gateways manually.",
            self.result.package,
        )

    def _publish_failed(self, reason: str) -> None:
        self.result.published = False
        self.result.exit_code = 0 if self.prompter is not None else 1
        self.result.message = f"Changes not published: {reason}"
        logger.error(
            "Changes NOT published (%s). They remain pending on the server; "
            "publish or discard the session in SmartConsole.",
            reason,
        )

    def _log_summary(self) -> None:
        r = self.result
        logger.info("Summary for layer %r in package %r:", r.layer, r.package)
        for c in r.changes:
            line = f"  {c.rule.label():<40} {c.before} -> {c.after}  {c.status}"
            if c.error:
                line += f": {c.error}"
            logger.info(line)
        if not self.config.dry_run:
            logger.info("Updated %d of %d rule(s)", r.success_count, r.total)
        for msg in r.skipped:
            logger.info("  skipped: %s", msg)
