# mgmt_api.py
# Python 3.8/3.9 compatible
"""
Thin wrappers around the management server's /web_api endpoints.

Every call is a single JSON POST. The session id returned by login() is
passed explicitly to each call and sent in the X-chkp-sid header; the
client itself keeps no session state.
"""

import json
import logging
from typing import Any, Dict, Iterator, List, Optional

import requests
import urllib3
from urllib3.exceptions import InsecureRequestWarning

logger = logging.getLogger(__name__)

SID_HEADER = "X-chkp-sid"
PAGE_LIMIT = 500


class MgmtApiError(Exception):
    """A failed management API call, with the server's message when it sent one."""

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


def error_message_from_body(body: Any) -> Optional[str]:
    """Pick errors[0].message, then message, out of a JSON error body."""
    if not isinstance(body, dict):
        return None
    errors = body.get("errors")
    if isinstance(errors, list) and errors:
        first = errors[0]
        if isinstance(first, dict) and first.get("message"):
            return str(first["message"])
    if body.get("message"):
        return str(body["message"])
    return None


class MgmtApiClient:
    def __init__(self, server: str, port: int = 443, verify_ssl: bool = False, timeout: float = 20):
        self.base_url = f"https://{server}:{port}/web_api"
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "Content-Type": "application/json",
        })
        self.session.verify = verify_ssl
        if not verify_ssl:
            # management servers usually run on self-signed certificates
            urllib3.disable_warnings(InsecureRequestWarning)

    def api_url(self, verb: str) -> str:
        return f"{self.base_url}/{verb.strip('/')}"

    def call(self, verb: str, payload: Optional[Dict[str, Any]] = None, sid: Optional[str] = None) -> Dict[str, Any]:
        headers: Dict[str, str] = {}
        if sid:
            headers[SID_HEADER] = sid
        body = payload or {}
        try:
            r = self.session.post(self.api_url(verb), json=body, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            logger.debug("POST %s transport error: %s", verb, e)
            raise MgmtApiError(f"{verb}: {e}") from e

        if r.status_code >= 400:
            try:
                data = r.json()
            except ValueError:
                data = None
            msg = error_message_from_body(data) or f"HTTP {r.status_code}: {r.text.strip() or r.reason}"
            code = data.get("code") if isinstance(data, dict) else None
            logger.debug("POST %s failed (%s): %s", verb, r.status_code, msg)
            raise MgmtApiError(msg, status_code=r.status_code, code=code)

        if not r.content:
            return {}
        try:
            data = r.json()
        except ValueError as e:
            raise MgmtApiError(f"{verb}: response is not JSON: {r.text[:200]}", status_code=r.status_code) from e
        return data if isinstance(data, dict) else {"result": data}

    def iter_pages(self, verb: str, payload: Dict[str, Any], key: str, sid: str) -> Iterator[Dict[str, Any]]:
        """Yield each response page of a show-* list endpoint, stepping offset by `to`."""
        offset = 0
        while True:
            body = dict(payload)
            body["offset"] = offset
            body["limit"] = PAGE_LIMIT
            data = self.call(verb, body, sid=sid)
            yield data
            total = data.get("total")
            to = data.get("to")
            if total is None or to is None or not data.get(key) or to >= total:
                break
            offset = to

    def get_all(self, verb: str, payload: Dict[str, Any], key: str, sid: str) -> List[Dict[str, Any]]:
        """Page through a show-* list endpoint and return the merged `key` items."""
        out: List[Dict[str, Any]] = []
        for page in self.iter_pages(verb, payload, key, sid):
            out.extend(page.get(key) or [])
        return out

    # ----------------- session -----------------

    def login(
        self,
        user: str,
        password: str,
        domain: Optional[str] = None,
        session_name: Optional[str] = None,
        session_description: Optional[str] = None,
    ) -> str:
        payload: Dict[str, Any] = {"user": user, "password": password}
        if domain:
            payload["domain"] = domain
        if session_name:
            payload["session-name"] = session_name
        if session_description:
            payload["session-description"] = session_description
        data = self.call("login", payload)
        sid = data.get("sid")
        if not sid:
            raise MgmtApiError("login: response carried no session id")
        logger.debug("Logged in as %s (api-server-version=%s)", user, data.get("api-server-version"))
        return sid

    def logout(self, sid: str) -> None:
        self.call("logout", {}, sid=sid)

    def discard(self, sid: str) -> Dict[str, Any]:
        return self.call("discard", {}, sid=sid)

    def publish(self, sid: str) -> Optional[str]:
        data = self.call("publish", {}, sid=sid)
        return data.get("task-id")

    def show_task(self, sid: str, task_id: str) -> Dict[str, Any]:
        return self.call("show-task", {"task-id": task_id, "details-level": "full"}, sid=sid)

    # ----------------- policy -----------------

    def show_packages(self, sid: str) -> List[Dict[str, Any]]:
        return self.get_all("show-packages", {"details-level": "full"}, "packages", sid)

    def show_package(self, sid: str, name: str) -> Dict[str, Any]:
        return self.call("show-package", {"name": name, "details-level": "full"}, sid=sid)

    def show_access_rulebase(self, sid: str, layer: str) -> Dict[str, Any]:
        """Fetch a layer's rulebase; pages are merged into one response."""
        rulebase: List[Dict[str, Any]] = []
        objects: List[Dict[str, Any]] = []
        payload = {"name": layer, "details-level": "full", "use-object-dictionary": True}
        for page in self.iter_pages("show-access-rulebase", payload, "rulebase", sid):
            rulebase.extend(page.get("rulebase") or [])
            objects.extend(page.get("objects-dictionary") or [])
        return {"rulebase": rulebase, "objects-dictionary": objects}

    def set_access_rule(self, sid: str, layer: str, uid: str, track: Dict[str, Any]) -> Dict[str, Any]:
        payload = {"layer": layer, "uid": uid, "track": track}
        logger.debug("set-access-rule payload: %s", json.dumps(payload))
        return self.call("set-access-rule", payload, sid=sid)
