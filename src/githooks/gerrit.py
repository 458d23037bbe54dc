"""Minimal Gerrit REST client and the patchset voting post-hook."""

from __future__ import annotations

import base64
import json
import logging
import re
import socket
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Mapping
from urllib import error, parse, request

from .config import ConfigStore
from .errors import FatalHookError, GitHooksError

if TYPE_CHECKING:
    from .context import RepositoryContext
    from .types import Fault


logger = logging.getLogger(__name__)

GERRIT_SECTION = "githooks.gerrit"
DEFAULT_VOTES_TO_APPROVE = "Code-Review+1"
DEFAULT_VOTES_TO_REJECT = "Code-Review-1"
MAX_MESSAGE_LENGTH = 65000
_XSSI_PREFIX = ")]}'"
_LABEL_RE = re.compile(r"^([-\w]+)([-+]\d+)$")


class GerritClientError(GitHooksError):
    """Base error for Gerrit REST failures."""


class GerritTimeoutError(GerritClientError):
    """Raised when a Gerrit request times out."""


class GerritHTTPError(GerritClientError):
    """Raised when Gerrit answers with a non-2xx status."""


@dataclass(frozen=True)
class GerritSettings:
    url: str
    username: str
    password: str
    timeout_s: float = 30.0


def parse_gerrit_settings(config: ConfigStore) -> GerritSettings:
    values: dict[str, str] = {}
    for key in ("url", "username", "password"):
        value = config.get(GERRIT_SECTION, key)
        if not value:
            raise FatalHookError(f"missing {GERRIT_SECTION}.{key} configuration variable")
        values[key] = value
    timeout = config.get_int("githooks", "timeout", 60) or 30
    return GerritSettings(timeout_s=float(timeout), **values)


def parse_labels(spec: str) -> dict[str, str]:
    """Convert ``'LabelA-1,LabelB+2'`` into ``{'LabelA': '-1', 'LabelB': '+2'}``."""
    labels: dict[str, str] = {}
    for item in spec.split(","):
        item = item.strip()
        if not item:
            continue
        match = _LABEL_RE.match(item)
        if not match:
            raise GitHooksError(f"invalid Gerrit vote '{item}'")
        labels[match.group(1)] = match.group(2)
    return labels


def change_id(options: Mapping[str, str]) -> str:
    """Gerrit 2.13+ passes the full ``project~branch~id`` already; older versions do not."""
    change = options["--change"]
    if "~" in change:
        return change
    return parse.quote("~".join((options["--project"], options["--branch"], change)), safe="")


class GerritClient:
    def __init__(self, settings: GerritSettings) -> None:
        self._settings = settings

    def post(self, path: str, payload: Mapping[str, Any]) -> Any:
        endpoint = self._settings.url.rstrip("/") + "/a" + path
        body = json.dumps(payload).encode("utf-8")
        credentials = f"{self._settings.username}:{self._settings.password}".encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "Authorization": "Basic " + base64.b64encode(credentials).decode("ascii"),
        }
        req = request.Request(endpoint, data=body, headers=headers, method="POST")
        logger.debug("POST %s", endpoint)
        try:
            with request.urlopen(req, timeout=self._settings.timeout_s) as response:
                raw = response.read().decode("utf-8")
        except error.HTTPError as exc:
            detail = _safe_error_body(exc)
            raise GerritHTTPError(f"Gerrit returned HTTP {exc.code} for POST {path}: {detail}") from exc
        except (socket.timeout, TimeoutError) as exc:
            raise GerritTimeoutError(f"POST {path} to Gerrit timed out") from exc
        except error.URLError as exc:
            if isinstance(exc.reason, TimeoutError):
                raise GerritTimeoutError(f"POST {path} to Gerrit timed out") from exc
            raise GerritClientError(f"cannot reach Gerrit: {exc.reason}") from exc
        if raw.startswith(_XSSI_PREFIX):
            raw = raw[len(_XSSI_PREFIX) :]
        raw = raw.strip()
        if not raw:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return raw

    def review(self, change: str, patchset: str, review: Mapping[str, Any]) -> Any:
        return self.post(f"/changes/{change}/revisions/{patchset}/review", review)

    def submit(self, change: str) -> Any:
        return self.post(f"/changes/{change}/submit", {"wait_for_merge": True})


def _safe_error_body(exc: error.HTTPError) -> str:
    try:
        return exc.read().decode("utf-8", errors="replace")[:500]
    except OSError:
        return ""


def build_review(config: ConfigStore, report: str | None) -> tuple[dict[str, Any], bool]:
    """Return the review input and whether the change should be submitted."""
    review: dict[str, Any] = {}
    submit = False
    if report:
        review["labels"] = parse_labels(config.get(GERRIT_SECTION, "votes-to-reject") or DEFAULT_VOTES_TO_REJECT)
        if len(report) > MAX_MESSAGE_LENGTH:
            report = report[:MAX_MESSAGE_LENGTH] + "...\n<truncated>\n"
        review["message"] = report
    else:
        review["labels"] = parse_labels(config.get(GERRIT_SECTION, "votes-to-approve") or DEFAULT_VOTES_TO_APPROVE)
        comment = config.get(GERRIT_SECTION, "comment-ok")
        if comment:
            review["message"] = f"[githooks] {comment}"
        submit = config.get_bool(GERRIT_SECTION, "auto-submit")
    notify = config.get(GERRIT_SECTION, "notify")
    if notify:
        review["notify"] = notify
    return review, submit


class PatchsetVoter:
    """Post-hook of patchset-created and draft-published: votes on the patchset."""

    def __init__(self, client: GerritClient | None = None) -> None:
        self._client = client

    def __call__(self, context: "RepositoryContext", faults: "list[Fault]", report: str | None = None) -> None:
        options = context.gerrit_options
        for arg in ("--project", "--branch", "--change", "--patchset"):
            if arg not in options:
                raise FatalHookError(f"missing {arg} argument to Gerrit's {context.hook.value} hook")
        if not context.config.get_bool(GERRIT_SECTION, "enabled", True):
            logger.info("Gerrit voting is disabled")
            return
        client = self._client or GerritClient(parse_gerrit_settings(context.config))
        change = change_id(options)
        review, submit = build_review(context.config, report if faults else None)
        logger.info("voting %s on change %s patchset %s", review["labels"], change, options["--patchset"])
        client.review(change, options["--patchset"], review)
        if submit:
            try:
                client.submit(change)
            except GerritClientError as exc:
                raise GerritClientError(
                    "I couldn't submit the change. Perhaps you have to rebase it manually to resolve a conflict. "
                    f"{exc}"
                ) from exc
