import logging
from typing import Any, Dict, List, Optional

import pytest

from mgmt_api import MgmtApiError

LOG_UID = "uid-track-log"
NONE_UID = "uid-track-none"


def make_rulebase() -> Dict[str, Any]:
    """One section holding two rules, then three top-level rules."""
    return {
        "rulebase": [
            {
                "type": "access-section",
                "name": "Infra",
                "rulebase": [
                    {"type": "access-rule", "uid": "r1", "name": "dns", "track": {"type": LOG_UID, "accounting": False, "per-connection": True, "per-session": False}},
                    {"type": "access-rule", "uid": "r2", "name": "ntp", "track": {"type": NONE_UID}},
                ],
            },
            {"type": "access-rule", "uid": "r3", "name": "web", "track": {"type": {"name": "Log", "uid": LOG_UID}}},
            {"type": "access-rule", "uid": "r4", "name": "web", "track": LOG_UID},
            {"type": "access-rule", "uid": "r5", "name": "cleanup", "track": {"type": NONE_UID}},
        ],
        "objects-dictionary": [
            {"uid": LOG_UID, "name": "Log", "type": "Track"},
            {"uid": NONE_UID, "name": "None", "type": "Track"},
        ],
    }


class FakeMgmtClient:
    """In-memory stand-in for MgmtApiClient that records every call."""

    def __init__(
        self,
        packages: Optional[List[str]] = None,
        layers: Optional[List[str]] = None,
        rulebase: Optional[Dict[str, Any]] = None,
        reject_uids=(),
        reject_types=(),
        login_error: Optional[str] = None,
        logout_error: Optional[str] = None,
        discard_error: Optional[str] = None,
        publish_error: Optional[str] = None,
        task_id: Optional[str] = "task-1",
        task_statuses=("succeeded",),
    ):
        self.packages = ["Standard"] if packages is None else packages
        self.layers = ["Network"] if layers is None else layers
        self.rulebase = make_rulebase() if rulebase is None else rulebase
        self.reject_uids = set(reject_uids)
        self.reject_types = set(reject_types)
        self.login_error = login_error
        self.logout_error = logout_error
        self.discard_error = discard_error
        self.publish_error = publish_error
        self.task_id = task_id
        self.task_statuses = list(task_statuses)
        self.calls: List[tuple] = []

    def verbs(self) -> List[str]:
        return [c[0] for c in self.calls]

    def set_calls(self) -> List[tuple]:
        return [c for c in self.calls if c[0] == "set-access-rule"]

    def login(self, user, password, domain=None, session_name=None, session_description=None):
        self.calls.append(("login", user))
        if self.login_error:
            raise MgmtApiError(self.login_error, status_code=400)
        return "sid-1"

    def logout(self, sid):
        self.calls.append(("logout", sid))
        if self.logout_error:
            raise MgmtApiError(self.logout_error)

    def discard(self, sid):
        self.calls.append(("discard", sid))
        if self.discard_error:
            raise MgmtApiError(self.discard_error, status_code=409)
        return {"number-of-discarded-changes": 0}

    def show_packages(self, sid):
        self.calls.append(("show-packages",))
        return [{"name": n} for n in self.packages]

    def show_package(self, sid, name):
        self.calls.append(("show-package", name))
        return {"name": name, "access-layers": [{"name": l} for l in self.layers]}

    def show_access_rulebase(self, sid, layer):
        self.calls.append(("show-access-rulebase", layer))
        return self.rulebase

    def set_access_rule(self, sid, layer, uid, track):
        self.calls.append(("set-access-rule", layer, uid, track))
        if uid in self.reject_uids or track["type"] in self.reject_types:
            raise MgmtApiError(f"Track type {track['type']} is not supported by this layer", status_code=400)
        return {"uid": uid}

    def publish(self, sid):
        self.calls.append(("publish",))
        if self.publish_error:
            raise MgmtApiError(self.publish_error)
        return self.task_id

    def show_task(self, sid, task_id):
        self.calls.append(("show-task", task_id))
        status = self.task_statuses.pop(0) if len(self.task_statuses) > 1 else self.task_statuses[0]
        return {"tasks": [{"task-id": task_id, "status": status, "progress-percentage": 50}]}


class ScriptedPrompter:
    def __init__(self, answers=(), confirms=(), choices=()):
        self.answers = list(answers)
        self.confirms = list(confirms)
        self.choices = list(choices)
        self.questions: List[str] = []

    def ask(self, text, default=None):
        self.questions.append(text)
        return self.answers.pop(0)

    def ask_secret(self, text):
        self.questions.append(text)
        return "secret"

    def confirm(self, text, default=False):
        self.questions.append(text)
        return self.confirms.pop(0)

    def choose(self, title, options):
        self.questions.append(title)
        return self.choices.pop(0)


@pytest.fixture
def fake_client():
    return FakeMgmtClient()


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for h in root.handlers:
        if h not in handlers:
            h.close()
    root.handlers[:] = handlers
    root.setLevel(level)
