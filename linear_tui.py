#!/usr/bin/env python3
# linear_tui: Terminal client for Linear issues and projects
#
# Commands
#   linear init                          store and validate a Linear API key
#   linear issues list|view|create       browse, inspect and create issues
#   linear projects list|view|create     browse, inspect and create projects
#
# Hotkeys (list / details)
#   up/down  move selection
#   enter    open details for the selected record
#   e        edit the selected record
#   q        back (quits from the list)
#
# Hotkeys (record editor)
#   up/down     move between fields
#   enter       edit text/date field in $EDITOR
#   left/right  cycle select fields (no wraparound)
#   a-z 0-9     search the Assignee field; backspace drops a character
#   s           save all changes in one mutation
#   q/esc       close the editor, discarding unsaved changes
#
# Config
# - ~/.config/linear-cli/config.yml holds `api_key` (written by `linear init`)
# - ~/.linear-cli-defaults.json remembers the last team/assignee/project/state
#   used by `issues create`
#
# Environment
# - LINEAR_API_KEY (optional; overrides .env and the config file)
# - EDITOR (external editor for free-form fields, defaults to vim)

from __future__ import annotations

import argparse
import asyncio
import csv
import datetime as dt
import io
import json
import logging
import os
import secrets
import shlex
import subprocess
import sys
import tempfile
import time
import unicodedata
from dataclasses import dataclass, field
from logging.handlers import RotatingFileHandler
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import requests
import yaml
from prompt_toolkit import Application
from prompt_toolkit.application import run_in_terminal
from prompt_toolkit.filters import Condition
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.keys import Keys
from prompt_toolkit.layout import HSplit, Layout, Window
from prompt_toolkit.layout.controls import FormattedTextControl
from prompt_toolkit.shortcuts import prompt as pt_prompt
from prompt_toolkit.styles import Style
from prompt_toolkit.utils import get_cwidth as _pt_get_cwidth

__version__ = "0.1.0"

logger = logging.getLogger('linear_tui')


class LinearError(RuntimeError):
    """Raised when the Linear API rejects a request or cannot be reached."""


class ConfigError(RuntimeError):
    """Raised when required local configuration (the API key) is missing."""


class EditorError(RuntimeError):
    """Raised when the external editor cannot be started or exits non-zero."""


# -----------------------------
# Config
# -----------------------------
CONFIG_DIR = os.path.expanduser("~/.config/linear-cli")
DEFAULT_CONFIG_PATH = os.path.join(CONFIG_DIR, "config.yml")
DEFAULTS_PATH = os.path.expanduser("~/.linear-cli-defaults.json")
LOG_PATH = os.path.join(CONFIG_DIR, "linear_tui.log")
DEFAULTS_KEYS = ("state", "assignee", "project", "team")


@dataclass
class Config:
    api_key: str = ""
    path: str = DEFAULT_CONFIG_PATH


def _read_yaml(path: str) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        try:
            raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Config: invalid YAML in {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ValueError(f"Config: expected a mapping in {path}")
    return raw


def load_config(path: str) -> Config:
    if not os.path.isfile(path):
        return Config(path=path)
    raw = _read_yaml(path)
    return Config(api_key=str(raw.get("api_key") or "").strip(), path=path)


def save_api_key(path: str, api_key: str) -> None:
    raw = _read_yaml(path) if os.path.isfile(path) else {}
    raw["api_key"] = api_key
    d = os.path.dirname(path)
    if d and not os.path.isdir(d):
        os.makedirs(d, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(raw, f, default_flow_style=False)
    try:
        os.chmod(path, 0o600)
    except OSError:
        logger.warning("Could not restrict permissions on %s", path)


def load_dotenv_token() -> Optional[str]:
    """Load LINEAR_API_KEY from a .env file in the current directory if present."""
    path = os.path.join(os.getcwd(), ".env")
    if not os.path.isfile(path):
        return None
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith('#') or '=' not in line:
                continue
            k, v = line.split('=', 1)
            k = k.strip()
            v = v.strip().strip('"').strip("'")
            if k == "LINEAR_API_KEY" and v:
                return v
    return None


def resolve_api_key(cfg: Config) -> str:
    """Environment first, then .env, then the config file."""
    key = os.environ.get("LINEAR_API_KEY") or load_dotenv_token() or cfg.api_key
    if not key:
        raise ConfigError("Linear API key not found. Run `linear init` to set it.")
    return key


def load_defaults(path: Optional[str] = None) -> Dict[str, str]:
    path = path or DEFAULTS_PATH
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, ValueError):
        return {}
    if not isinstance(data, dict):
        return {}
    return {str(k): str(v) for k, v in data.items() if v not in (None, '')}


def save_defaults(values: Dict[str, Optional[str]], path: Optional[str] = None) -> None:
    path = path or DEFAULTS_PATH
    data = {k: values[k] for k in DEFAULTS_KEYS if values.get(k)}
    try:
        d = os.path.dirname(path)
        if d and not os.path.isdir(d):
            os.makedirs(d, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2)
    except OSError as exc:
        logger.warning("Failed to save default values to %s: %s", path, exc)
        print(f"Failed to save default values: {exc}", file=sys.stderr)


def setup_logging(log_level: str = 'ERROR', log_path: Optional[str] = None) -> logging.Logger:
    """File logger for diagnostics; the handler level honors --log-level (default ERROR)."""
    log_path = log_path or LOG_PATH
    # Always reset handlers so repeated CLI invocations in one process don't stack files.
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()
    logger.setLevel(logging.DEBUG)
    lvl = getattr(logging, str(log_level).upper(), logging.ERROR)
    if not isinstance(lvl, int):
        lvl = logging.ERROR
    try:
        d = os.path.dirname(log_path)
        if d and not os.path.isdir(d):
            os.makedirs(d, exist_ok=True)
        fh = RotatingFileHandler(log_path, maxBytes=2000000, backupCount=2, encoding='utf-8')
    except OSError:
        logger.addHandler(logging.NullHandler())
        return logger
    fh.setLevel(lvl)
    fh.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(message)s'))
    logger.addHandler(fh)
    return logger


# -----------------------------
# Records
# -----------------------------
@dataclass(frozen=True)
class Option:
    id: str
    name: str


def _ref(node: object) -> Optional[Option]:
    if not isinstance(node, dict) or not node.get('id'):
        return None
    return Option(id=str(node['id']), name=str(node.get('name') or ''))


@dataclass(frozen=True)
class Issue:
    id: str
    identifier: str
    title: str
    description: str = ""
    priority: int = 0
    url: str = ""
    created_at: str = ""
    updated_at: str = ""
    completed_at: Optional[str] = None
    state: Optional[Option] = None
    assignee: Optional[Option] = None
    team: Optional[Option] = None
    project: Optional[Option] = None

    @classmethod
    def from_node(cls, node: Dict[str, object]) -> "Issue":
        try:
            priority = int(node.get('priority') or 0)
        except (TypeError, ValueError):
            priority = 0
        return cls(
            id=str(node.get('id') or ''),
            identifier=str(node.get('identifier') or ''),
            title=str(node.get('title') or ''),
            description=str(node.get('description') or ''),
            priority=priority,
            url=str(node.get('url') or ''),
            created_at=str(node.get('createdAt') or ''),
            updated_at=str(node.get('updatedAt') or ''),
            completed_at=node.get('completedAt') or None,
            state=_ref(node.get('state')),
            assignee=_ref(node.get('assignee')),
            team=_ref(node.get('team')),
            project=_ref(node.get('project')),
        )

    @property
    def status_name(self) -> str:
        return self.state.name if self.state else ''

    @property
    def assignee_name(self) -> str:
        return self.assignee.name if self.assignee and self.assignee.name else 'Unassigned'

    @property
    def team_name(self) -> str:
        return self.team.name if self.team and self.team.name else 'No Team'

    @property
    def project_name(self) -> str:
        return self.project.name if self.project and self.project.name else 'No Project'


@dataclass(frozen=True)
class Project:
    id: str
    name: str
    description: str = ""
    state: str = ""
    url: str = ""
    created_at: str = ""
    started_at: Optional[str] = None
    start_date: Optional[str] = None
    target_date: Optional[str] = None
    lead: Optional[Option] = None
    team: Optional[Option] = None

    @classmethod
    def from_node(cls, node: Dict[str, object]) -> "Project":
        teams = node.get('teams') or {}
        team_nodes = teams.get('nodes') if isinstance(teams, dict) else None
        first_team = next((t for t in (team_nodes or []) if isinstance(t, dict)), None)
        return cls(
            id=str(node.get('id') or ''),
            name=str(node.get('name') or ''),
            description=str(node.get('description') or ''),
            state=str(node.get('state') or ''),
            url=str(node.get('url') or ''),
            created_at=str(node.get('createdAt') or ''),
            started_at=node.get('startedAt') or None,
            start_date=node.get('startDate') or None,
            target_date=node.get('targetDate') or None,
            lead=_ref(node.get('lead')),
            team=_ref(first_team),
        )

    @property
    def lead_name(self) -> str:
        return self.lead.name if self.lead else ''

    @property
    def team_name(self) -> str:
        return self.team.name if self.team else ''


def find_option(options: Sequence[Option], name: Optional[str]) -> Optional[Option]:
    """Match an option by id, exact name, then case-insensitive name."""
    if not name:
        return None
    for opt in options:
        if opt.id == name or opt.name == name:
            return opt
    low = name.strip().lower()
    for opt in options:
        if opt.name.lower() == low:
            return opt
    return None


def resolve_option_id(options: Optional[Sequence[Option]], name: object) -> Optional[str]:
    for opt in options or ():
        if opt.name == name:
            return opt.id
    return None


# -----------------------------
# Linear GraphQL
# -----------------------------
LINEAR_API_URL = "https://api.linear.app/graphql"

GQL_ISSUE_FIELDS = """
  id identifier title description priority url createdAt updatedAt completedAt
  state { id name type }
  assignee { id name }
  team { id name key }
  project { id name }
"""
GQL_PROJECT_FIELDS = """
  id name description state url createdAt startedAt startDate targetDate
  lead { id name }
  teams(first: 1) { nodes { id name key } }
"""
GQL_ISSUE = "query($id:String!) { issue(id:$id) {" + GQL_ISSUE_FIELDS + "} }"
GQL_ISSUES = """query($filter:IssueFilter, $first:Int!) {
  issues(filter:$filter, first:$first) { nodes {""" + GQL_ISSUE_FIELDS + """} }
}"""
GQL_PROJECT = "query($id:String!) { project(id:$id) {" + GQL_PROJECT_FIELDS + "} }"
GQL_PROJECTS = """query($filter:ProjectFilter, $first:Int!) {
  projects(filter:$filter, first:$first) { nodes {""" + GQL_PROJECT_FIELDS + """} }
}"""
GQL_USERS = """query($filter:UserFilter) {
  users(filter:$filter, first:250) { nodes { id name } }
}"""
GQL_TEAMS = """query($filter:TeamFilter) {
  teams(filter:$filter, first:100) { nodes { id name key } }
}"""
GQL_STATES = """query($filter:WorkflowStateFilter) {
  workflowStates(filter:$filter, first:250) { nodes { id name type position } }
}"""
GQL_VIEWER = "query { viewer { id name email } }"
GQL_ISSUE_CREATE = """mutation($input:IssueCreateInput!) {
  issueCreate(input:$input) { success issue {""" + GQL_ISSUE_FIELDS + """} }
}"""
GQL_ISSUE_UPDATE = """mutation($id:String!, $input:IssueUpdateInput!) {
  issueUpdate(id:$id, input:$input) { success issue {""" + GQL_ISSUE_FIELDS + """} }
}"""
GQL_PROJECT_CREATE = """mutation($input:ProjectCreateInput!) {
  projectCreate(input:$input) { success project {""" + GQL_PROJECT_FIELDS + """} }
}"""
GQL_PROJECT_UPDATE = """mutation($id:String!, $input:ProjectUpdateInput!) {
  projectUpdate(id:$id, input:$input) { success project {""" + GQL_PROJECT_FIELDS + """} }
}"""

FETCH_LIMIT = 100


def _session(api_key: str) -> requests.Session:
    s = requests.Session()
    # Personal API keys go in the header verbatim (no Bearer prefix).
    s.headers["Authorization"] = api_key
    s.headers["Content-Type"] = "application/json"
    return s


def _graphql_raw(session: requests.Session, query: str, variables: Dict[str, object]) -> Dict:
    try:
        r = session.post(LINEAR_API_URL, json={"query": query, "variables": variables}, timeout=60)
        if r.status_code == 400:
            # Validation errors come back as 400 with a GraphQL error body.
            try:
                body = r.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and body.get("errors"):
                return body
        r.raise_for_status()
        return r.json()
    except Exception:
        logger.exception("GraphQL request failed")
        raise


def _retry_sleep(seconds: float, on_wait: Optional[Callable[[str], None]] = None) -> None:
    msg = f"Rate limited; waiting {int(seconds)}s…"
    if on_wait:
        on_wait(msg)
    else:
        logger.info(msg)
    time.sleep(max(0.0, seconds))


def _parse_retry_after_seconds(resp: Optional[requests.Response]) -> Optional[int]:
    if resp is None:
        return None
    ra = resp.headers.get('Retry-After') if resp.headers is not None else None
    if ra:
        try:
            return int(float(ra))
        except ValueError:
            pass
    # Linear reports the reset as epoch milliseconds.
    reset_ms = resp.headers.get('X-RateLimit-Requests-Reset') if resp.headers is not None else None
    if reset_ms:
        try:
            return max(1, int(int(reset_ms) / 1000 - time.time()))
        except ValueError:
            pass
    return None


def _is_rate_limited(errors: List[object]) -> bool:
    for e in errors:
        if not isinstance(e, dict):
            continue
        ext = e.get("extensions") or {}
        if isinstance(ext, dict) and str(ext.get("code") or "").upper() in ("RATELIMITED", "RATE_LIMITED"):
            return True
    return False


def _graphql_with_backoff(
    session: requests.Session,
    query: str,
    variables: Dict[str, object],
    on_wait: Optional[Callable[[str], None]] = None,
    max_total_wait: int = 120,
) -> Dict:
    """Call GraphQL with handling for rate limits and transient failures.

    - Retries RATELIMITED GraphQL errors with exponential backoff.
    - Retries HTTP 429/502/503/504 with Retry-After or exponential backoff.
    """
    backoff = 2
    total_wait = 0
    while True:
        try:
            resp = _graphql_raw(session, query, variables)
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            if status in (429, 502, 503, 504):
                wait_s = _parse_retry_after_seconds(e.response)
                if wait_s is None:
                    wait_s = min(60, backoff)
                    backoff = min(60, backoff * 2)
                if total_wait + wait_s > max_total_wait:
                    raise
                _retry_sleep(wait_s, on_wait)
                total_wait += wait_s
                continue
            raise
        except (requests.exceptions.Timeout, requests.exceptions.ConnectionError):
            wait_s = min(30, backoff)
            backoff = min(60, backoff * 2)
            if total_wait + wait_s > max_total_wait:
                raise
            _retry_sleep(wait_s, on_wait)
            total_wait += wait_s
            continue

        errs = resp.get("errors") or []
        if errs and _is_rate_limited(errs):
            wait_s = min(60, backoff)
            backoff = min(60, backoff * 2)
            if total_wait + wait_s > max_total_wait:
                # Let caller surface the error after exceeding the budget
                return resp
            _retry_sleep(wait_s, on_wait)
            total_wait += wait_s
            continue
        return resp


def _error_message(errors: List[object]) -> str:
    parts = []
    for e in errors:
        if isinstance(e, dict):
            parts.append(str(e.get("message") or e))
        else:
            parts.append(str(e))
    return "; ".join(parts) or "Unknown error"


class LinearGateway:
    """Request/response access to Linear entities.

    Every failure surfaces as :class:`LinearError` carrying a readable message;
    callers never need to interpret HTTP or GraphQL error codes.
    """

    RECORD_TYPES = {'issue': Issue, 'project': Project}

    def __init__(self, api_key: str, session: Optional[requests.Session] = None):
        if not api_key:
            raise ConfigError("Linear API key not found. Run `linear init` to set it.")
        self.session = session or _session(api_key)

    def _request(self, query: str, variables: Optional[Dict[str, object]] = None) -> Dict[str, object]:
        try:
            resp = _graphql_with_backoff(self.session, query, variables or {})
        except requests.exceptions.RequestException as exc:
            raise LinearError(f"Request to Linear failed: {exc}") from exc
        errs = resp.get("errors") or []
        if errs:
            raise LinearError(_error_message(errs))
        data = resp.get("data")
        if not isinstance(data, dict):
            raise LinearError("Linear returned no data")
        return data

    @staticmethod
    def _nodes(data: Dict[str, object], key: str) -> List[Dict[str, object]]:
        conn = data.get(key) or {}
        nodes = conn.get("nodes") if isinstance(conn, dict) else None
        return [n for n in (nodes or []) if isinstance(n, dict)]

    def fetch_one(self, kind: str, id_or_label: str):
        if kind == 'issue':
            data = self._request(GQL_ISSUE, {"id": id_or_label})
            node = data.get('issue')
            if not isinstance(node, dict):
                raise LinearError(f"Issue {id_or_label} not found")
            return Issue.from_node(node)
        if kind == 'project':
            data = self._request(GQL_PROJECT, {"id": id_or_label})
            node = data.get('project')
            if not isinstance(node, dict):
                raise LinearError(f"Project {id_or_label} not found")
            return Project.from_node(node)
        raise ValueError(f"Unsupported record kind: {kind}")

    def fetch_many(self, kind: str, filter: Optional[Dict[str, object]] = None) -> list:
        variables: Dict[str, object] = {"filter": filter or None}
        if kind == 'issue':
            variables["first"] = FETCH_LIMIT
            return [Issue.from_node(n) for n in self._nodes(self._request(GQL_ISSUES, variables), 'issues')]
        if kind == 'project':
            variables["first"] = FETCH_LIMIT
            return [Project.from_node(n) for n in self._nodes(self._request(GQL_PROJECTS, variables), 'projects')]
        if kind == 'user':
            nodes = self._nodes(self._request(GQL_USERS, variables), 'users')
        elif kind == 'team':
            nodes = self._nodes(self._request(GQL_TEAMS, variables), 'teams')
        elif kind == 'state':
            nodes = self._nodes(self._request(GQL_STATES, variables), 'workflowStates')
            nodes.sort(key=lambda n: float(n.get('position') or 0))
        else:
            raise ValueError(f"Unsupported kind: {kind}")
        return [opt for opt in (_ref(n) for n in nodes) if opt is not None]

    def create_one(self, kind: str, payload: Dict[str, object]):
        if kind == 'issue':
            query, key = GQL_ISSUE_CREATE, 'issueCreate'
        elif kind == 'project':
            query, key = GQL_PROJECT_CREATE, 'projectCreate'
        else:
            raise ValueError(f"Unsupported record kind: {kind}")
        result = self._request(query, {"input": payload}).get(key) or {}
        node = result.get(kind) if isinstance(result, dict) else None
        if not (isinstance(result, dict) and result.get('success') and isinstance(node, dict)):
            raise LinearError(f"Failed to create {kind}")
        logger.info("Created %s %s", kind, node.get('id'))
        return self.RECORD_TYPES[kind].from_node(node)

    def update_one(self, kind: str, record_id: str, payload: Dict[str, object]):
        """Apply ``payload``; returns the refreshed record, or None when Linear reports success=false."""
        if kind == 'issue':
            query, key = GQL_ISSUE_UPDATE, 'issueUpdate'
        elif kind == 'project':
            query, key = GQL_PROJECT_UPDATE, 'projectUpdate'
        else:
            raise ValueError(f"Unsupported record kind: {kind}")
        result = self._request(query, {"id": record_id, "input": payload}).get(key) or {}
        node = result.get(kind) if isinstance(result, dict) else None
        if not (isinstance(result, dict) and result.get('success') and isinstance(node, dict)):
            logger.warning("Update of %s %s returned success=false", kind, record_id)
            return None
        logger.info("Updated %s %s", kind, record_id)
        return self.RECORD_TYPES[kind].from_node(node)

    def viewer(self) -> Dict[str, object]:
        viewer = self._request(GQL_VIEWER).get('viewer')
        if not isinstance(viewer, dict):
            raise LinearError("Could not verify API key")
        return viewer

    def users(self) -> List[Option]:
        return self.fetch_many('user')

    def teams(self) -> List[Option]:
        return self.fetch_many('team')

    def project_options(self) -> List[Option]:
        return [Option(p.id, p.name) for p in self.fetch_many('project')]

    def team_states(self, team_id: str) -> List[Option]:
        return self.fetch_many('state', {"team": {"id": {"eq": team_id}}})

    def workflow_states(self) -> List[Option]:
        return self.fetch_many('state')


def build_issue_filter(project: Optional[str] = None, assignee: Optional[str] = None,
                       status: Optional[str] = None) -> Dict[str, object]:
    flt: Dict[str, object] = {}
    if project:
        flt['project'] = {'name': {'eq': project}}
    if assignee:
        flt['assignee'] = {'name': {'eq': assignee}}
    if status:
        flt['state'] = {'name': {'eq': status}}
    return flt


def build_project_filter(team: Optional[str] = None, lead: Optional[str] = None,
                         state: Optional[str] = None) -> Dict[str, object]:
    flt: Dict[str, object] = {}
    if team:
        flt['accessibleTeams'] = {'some': {'name': {'eq': team}}}
    if lead:
        flt['lead'] = {'name': {'eq': lead}}
    if state:
        flt['state'] = {'eq': state}
    return flt


# -----------------------------
# External editor
# -----------------------------
def open_editor(initial_content: str = "", file_extension: str = "md") -> str:
    """Open $EDITOR on a temp file seeded with ``initial_content``; return the saved text.

    Blocks until the editor exits. The temp file is always removed.
    """
    path = os.path.join(tempfile.gettempdir(), f"linear-edit-{secrets.token_hex(6)}.{file_extension}")
    editor = os.environ.get("EDITOR") or "vim"
    try:
        try:
            with open(path, "w", encoding="utf-8") as f:
                f.write(initial_content or "")
        except OSError as exc:
            raise EditorError(f"Could not create temp file {path}: {exc}") from exc
        try:
            result = subprocess.run(shlex.split(editor) + [path])
        except OSError as exc:
            raise EditorError(f"Could not start editor {editor!r}: {exc}") from exc
        if result.returncode != 0:
            raise EditorError(f"Editor process exited with status {result.returncode}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                return f.read().strip()
        except (OSError, UnicodeDecodeError) as exc:
            raise EditorError(f"Could not read edited text from {path}: {exc}") from exc
    finally:
        try:
            os.unlink(path)
        except OSError:
            pass


# -----------------------------
# Sorting
# -----------------------------
ISSUE_STATUS_ORDER: Dict[str, int] = {
    'In Progress': 0,
    'Backlog': 1,
    'Todo': 1,
    'Done': 2,
    'Canceled': 2,
}
ISSUE_DEFAULT_BUCKET = ISSUE_STATUS_ORDER['Backlog']
ISSUE_DONE_BUCKET = ISSUE_STATUS_ORDER['Done']

PROJECT_STATE_ORDER: Dict[str, int] = {
    'planned': 0,
    'in_progress': 1,
    'paused': 2,
    'completed': 3,
    'canceled': 3,
}
PROJECT_DEFAULT_BUCKET = PROJECT_STATE_ORDER['in_progress']


def _timestamp(value: Optional[str]) -> float:
    if not value:
        return 0.0
    try:
        return dt.datetime.fromisoformat(str(value).replace('Z', '+00:00')).timestamp()
    except ValueError:
        return 0.0


def issue_sort_key(issue: Issue) -> Tuple[int, int, float]:
    bucket = ISSUE_STATUS_ORDER.get(issue.status_name, ISSUE_DEFAULT_BUCKET)
    when = issue.completed_at if bucket == ISSUE_DONE_BUCKET else issue.created_at
    return (bucket, -int(issue.priority or 0), -_timestamp(when))


def sort_issues(issues: Sequence[Issue]) -> List[Issue]:
    """Status bucket, then priority (desc), then completion/creation date (desc)."""
    return sorted(issues, key=issue_sort_key)


def project_sort_key(project: Project) -> Tuple[int, int, float, float]:
    bucket = PROJECT_STATE_ORDER.get(project.state or '', PROJECT_DEFAULT_BUCKET)
    has_start = 0 if project.started_at else 1
    return (bucket, has_start, -_timestamp(project.started_at), -_timestamp(project.created_at))


def sort_projects(projects: Sequence[Project]) -> List[Project]:
    """State bucket, then started projects first (latest start first), then creation date (desc)."""
    return sorted(projects, key=project_sort_key)


# -----------------------------
# UI helpers (fragments only)
# -----------------------------
BASE_THEME_STYLE: Dict[str, str] = {
    'hint': '#5fd7af',
    'title': 'bold #ffd75f',
    'banner': 'bold reverse #87ff5f',
    'banner.url': 'bold reverse #87afff',
    'banner.description': 'bold reverse #ffd75f',
    'table.border': '#5f5f5f',
    'table.header': 'bold #ffd75f',
    'table.row': '#f0f0f0',
    'table.cursor': 'bold #ffffff bg:#444444',
    'table.empty': 'bold',
    'detail.text': '#f0f0f0',
    'editor.loading': '#87d7ff',
    'editor.busy': '#ffd787',
    'editor.saving': '#87afff',
    'editor.success': 'bold #87ff5f',
    'editor.error': 'bold #ff8787',
}

STATUS_EMOJI: Dict[str, str] = {
    'Ready': '⭕',
    'Planning': '📋',
    'In Review': '👀',
    'Todo': '📝',
    'Canceled': '⛔',
    'Done': '✅',
    'Duplicate': '🔄',
    'Backlog': '📚',
    'In Progress': '🚀',
}
PRIORITY_EMOJI: Dict[int, str] = {0: '⚪', 1: '🟢', 2: '🟡', 3: '🟠', 4: '🔴'}


def status_label(status: str) -> str:
    return f"{STATUS_EMOJI.get(status, '❓')} {status}"


def priority_label(priority: object) -> str:
    try:
        level = int(priority)
    except (TypeError, ValueError):
        level = 0
    return f"{PRIORITY_EMOJI.get(level, '⚪')} {level}"


def _char_width(ch: str) -> int:
    """Printable cell width for a single character."""
    if unicodedata.combining(ch) or unicodedata.category(ch) == "Cf":
        return 0
    fallback = 2 if unicodedata.east_asian_width(ch) in ("W", "F") else 1
    width = _pt_get_cwidth(ch)
    return width if width > fallback else fallback


def _display_width(text: str) -> int:
    return sum(_char_width(ch) for ch in text)


def _sanitize_cell_text(s: Optional[object]) -> str:
    return str(s if s is not None else "").replace("\r\n", " ").replace("\n", " ").replace("\r", " ")


def _truncate(s: str, maxlen: int) -> str:
    """Truncate to a maximum display width, preserving whole glyphs."""
    s = _sanitize_cell_text(s)
    if maxlen <= 0:
        return ""
    if _display_width(s) <= maxlen:
        return s
    ellipsis = "…"
    out: List[str] = []
    width = 0
    for ch in s:
        ch_w = _char_width(ch)
        if width + ch_w + 1 > maxlen:
            break
        out.append(ch)
        width += ch_w
    return "".join(out) + ellipsis


def _pad_display(text: Optional[object], width: int) -> str:
    """Pad/truncate text to an exact display width using spaces."""
    raw = _truncate(_sanitize_cell_text(text), width)
    return raw + " " * max(0, width - _display_width(raw))


def _parse_when(value: Optional[str]) -> Optional[dt.datetime]:
    if not value:
        return None
    try:
        parsed = dt.datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone()
    return parsed


def format_date(value: Optional[str], missing: str = 'Not set') -> str:
    when = _parse_when(value)
    if when is None:
        return missing
    return f"{when.month}/{when.day}/{when.year}"


def format_datetime(value: Optional[str], missing: str = '') -> str:
    when = _parse_when(value)
    return when.strftime('%Y-%m-%d %H:%M') if when else missing


Fragments = List[Tuple[str, str]]


def table_fragments(header: Sequence[str], rows: Sequence[Sequence[object]], widths: Sequence[int],
                    active: Optional[int] = None, rule_every_row: bool = False) -> Fragments:
    """Box-drawn table; the ``active`` row gets the cursor style."""
    def rule(left: str, join: str, right: str) -> str:
        return left + join.join('─' * (w + 2) for w in widths) + right

    def line(cells: Sequence[object]) -> str:
        return '│' + '│'.join(' ' + _pad_display(c, w) + ' ' for c, w in zip(cells, widths)) + '│'

    middle = rule('├', '┼', '┤') + '\n'
    frags: Fragments = [
        ('class:table.border', rule('┌', '┬', '┐') + '\n'),
        ('class:table.header', line(header) + '\n'),
        ('class:table.border', middle),
    ]
    for idx, row in enumerate(rows):
        if idx and rule_every_row:
            frags.append(('class:table.border', middle))
        style = 'class:table.cursor' if idx == active else 'class:table.row'
        frags.append((style, line(row) + '\n'))
    frags.append(('class:table.border', rule('└', '┴', '┘')))
    return frags


def plain_text(frags: Fragments) -> str:
    return ''.join(text for _, text in frags)


LIST_HINT = "Use ↑↓ to navigate, Enter to view details, 'e' to edit, 'q' to quit"
DETAIL_HINT = "Press 'e' to edit, 'q' or 'Esc' to go back"
ISSUE_LIST_WIDTHS = (1, 10, 45, 12, 8, 15, 15, 15, 10)
PROJECT_LIST_WIDTHS = (1, 10, 45, 12, 15, 15, 12, 12)
DETAIL_WIDTHS = (14, 52)


def issue_list_fragments(issues: Sequence[Issue], active_id: Optional[str]) -> Fragments:
    if not issues:
        return [('class:table.empty', 'No issues found.')]
    header = ['>', 'ID', 'Title', 'Status', 'Priority', 'Assignee', 'Team', 'Project', 'Created']
    rows: List[List[str]] = []
    active = None
    for idx, issue in enumerate(issues):
        selected = issue.id == active_id
        if selected:
            active = idx
        rows.append([
            '▶' if selected else ' ',
            issue.identifier,
            issue.title,
            status_label(issue.status_name),
            priority_label(issue.priority),
            issue.assignee_name,
            issue.team_name,
            issue.project_name,
            format_date(issue.created_at),
        ])
    return [('class:hint', LIST_HINT + '\n\n')] + table_fragments(header, rows, ISSUE_LIST_WIDTHS, active)


def project_list_fragments(projects: Sequence[Project], active_id: Optional[str]) -> Fragments:
    if not projects:
        return [('class:table.empty', 'No projects found.')]
    header = ['>', 'ID', 'Name', 'State', 'Lead', 'Team', 'Start Date', 'Target Date']
    rows: List[List[str]] = []
    active = None
    for idx, project in enumerate(projects):
        selected = project.id == active_id
        if selected:
            active = idx
        rows.append([
            '▶' if selected else ' ',
            project.id,
            project.name,
            project.state or 'Unknown',
            project.lead_name or 'Unassigned',
            project.team_name or 'No Team',
            format_date(project.started_at),
            format_date(project.target_date),
        ])
    return [('class:hint', LIST_HINT + '\n\n')] + table_fragments(header, rows, PROJECT_LIST_WIDTHS, active)


def issue_detail_fragments(issue: Issue) -> Fragments:
    rows = [
        ['Identifier', issue.identifier],
        ['Title', issue.title],
        ['Status', status_label(issue.status_name)],
        ['Priority', priority_label(issue.priority)],
        ['Created', format_datetime(issue.created_at)],
        ['Assignee', issue.assignee_name],
        ['Team', issue.team_name],
        ['Project', issue.project_name],
    ]
    if issue.completed_at:
        rows.append(['Completed', format_datetime(issue.completed_at)])
    frags: Fragments = [
        ('class:hint', DETAIL_HINT + '\n\n'),
        ('class:title', f"Viewing Issue: {issue.identifier}\n\n"),
        ('class:banner', 'Issue Details'),
        ('', '\n'),
    ]
    frags += table_fragments(['Field', 'Value'], rows, DETAIL_WIDTHS, rule_every_row=True)
    if issue.url:
        frags += [('', '\n\n'), ('class:banner.url', 'URL:'), ('', '\n'), ('class:detail.text', issue.url)]
    frags += [
        ('', '\n\n'),
        ('class:banner.description', 'Description:'),
        ('', '\n'),
        ('class:detail.text', issue.description or '--No description--'),
    ]
    return frags


def project_detail_fragments(project: Project) -> Fragments:
    start = project.start_date or project.started_at
    rows = [
        ['ID', project.id],
        ['Name', project.name],
        ['State', project.state or 'N/A'],
        ['Lead', project.lead_name or 'N/A'],
        ['Team', project.team_name or 'N/A'],
        ['Start Date', format_date(start, 'N/A')],
        ['Target Date', format_date(project.target_date, 'N/A')],
        ['Description', project.description or 'N/A'],
    ]
    frags: Fragments = [
        ('class:title', 'Project Details\n\n'),
        ('class:hint', DETAIL_HINT + '\n\n'),
    ]
    return frags + table_fragments(['Field', 'Value'], rows, DETAIL_WIDTHS, rule_every_row=True)


# -----------------------------
# Record editor
# -----------------------------
FIELD_TEXT = 'text'
FIELD_MULTILINE = 'multiline'
FIELD_SELECT = 'select'
FIELD_NUMERIC = 'numeric-select'
FIELD_DATE = 'date'
TEXT_KINDS = (FIELD_TEXT, FIELD_MULTILINE, FIELD_DATE)

MODE_BROWSE = 'browse'
MODE_EDIT_TEXT = 'edit-text'
MODE_SAVING = 'saving'

OUTCOME_SUCCESS = 'success'
OUTCOME_ERROR = 'error'

PRIORITY_LEVELS: Tuple[int, ...] = (0, 1, 2, 3, 4)
PROJECT_STATES: Tuple[str, ...] = ('backlog', 'planned', 'started', 'paused', 'completed', 'canceled')


@dataclass(frozen=True)
class FieldDescriptor:
    key: str
    label: str
    kind: str
    help: str
    options_key: Optional[str] = None   # option cache category for select fields
    levels: Tuple[int, ...] = ()        # numeric-select levels
    searchable: bool = False


ISSUE_EDIT_FIELDS: Tuple[FieldDescriptor, ...] = (
    FieldDescriptor('title', 'Title', FIELD_TEXT, 'Enter to edit'),
    FieldDescriptor('description', 'Description', FIELD_MULTILINE, 'Enter to edit'),
    FieldDescriptor('status', 'Status', FIELD_SELECT, '← → to change', options_key='states'),
    FieldDescriptor('priority', 'Priority', FIELD_NUMERIC, '← → to change', levels=PRIORITY_LEVELS),
    FieldDescriptor('assignee', 'Assignee', FIELD_SELECT, 'Type to search, ← → to change',
                    options_key='users', searchable=True),
    FieldDescriptor('team', 'Team', FIELD_SELECT, '← → to change', options_key='teams'),
    FieldDescriptor('project', 'Project', FIELD_SELECT, '← → to change', options_key='projects'),
)

PROJECT_EDIT_FIELDS: Tuple[FieldDescriptor, ...] = (
    FieldDescriptor('name', 'Name', FIELD_TEXT, 'Enter to edit'),
    FieldDescriptor('description', 'Description', FIELD_MULTILINE, 'Enter to edit'),
    FieldDescriptor('state', 'State', FIELD_SELECT, '← → to change', options_key='project_states'),
    FieldDescriptor('lead', 'Lead', FIELD_SELECT, '← → to change', options_key='users'),
    FieldDescriptor('team', 'Team', FIELD_SELECT, '← → to change', options_key='teams'),
    FieldDescriptor('start_date', 'Start Date', FIELD_DATE, 'Enter to edit (YYYY-MM-DD)'),
    FieldDescriptor('target_date', 'Target Date', FIELD_DATE, 'Enter to edit (YYYY-MM-DD)'),
)

OptionCache = Dict[str, List[Option]]
FormState = Dict[str, object]


def seed_issue_form(issue: Issue) -> FormState:
    return {
        'title': issue.title or '',
        'description': issue.description or '',
        'status': issue.status_name,
        'priority': int(issue.priority or 0),
        'assignee': issue.assignee_name,
        'team': issue.team_name,
        'project': issue.project_name,
    }


def _date_part(value: Optional[str]) -> str:
    return str(value)[:10] if value else ''


def seed_project_form(project: Project) -> FormState:
    return {
        'name': project.name or '',
        'description': project.description or '',
        'state': project.state or '',
        'lead': project.lead_name,
        'team': project.team_name,
        'start_date': _date_part(project.start_date or project.started_at),
        'target_date': _date_part(project.target_date),
    }


def build_issue_payload(form: FormState, options: OptionCache) -> Dict[str, object]:
    """Unmatched select names are left out, which Linear treats as "unchanged"."""
    payload: Dict[str, object] = {
        'title': form['title'],
        'description': form['description'],
        'priority': int(form['priority']),
    }
    for key, category, target in (
        ('assignee', 'users', 'assigneeId'),
        ('team', 'teams', 'teamId'),
        ('project', 'projects', 'projectId'),
        ('status', 'states', 'stateId'),
    ):
        option_id = resolve_option_id(options.get(category), form.get(key))
        if option_id:
            payload[target] = option_id
    return payload


def build_project_payload(form: FormState, options: OptionCache) -> Dict[str, object]:
    payload: Dict[str, object] = {
        'name': form['name'],
        'description': form['description'],
        'startDate': form['start_date'] or None,
        'targetDate': form['target_date'] or None,
    }
    state = resolve_option_id(options.get('project_states'), form.get('state'))
    if state:
        payload['state'] = state
    lead_id = resolve_option_id(options.get('users'), form.get('lead'))
    if lead_id:
        payload['leadId'] = lead_id
    team_id = resolve_option_id(options.get('teams'), form.get('team'))
    if team_id:
        payload['teamIds'] = [team_id]
    return payload


def load_issue_options(gateway: LinearGateway, issue: Issue) -> OptionCache:
    return {
        'users': gateway.users(),
        'teams': gateway.teams(),
        'projects': gateway.project_options(),
        'states': gateway.team_states(issue.team.id) if issue.team else [],
    }


def load_project_options(gateway: LinearGateway, project: Project) -> OptionCache:
    return {
        'users': gateway.users(),
        'teams': gateway.teams(),
        'project_states': [Option(s, s) for s in PROJECT_STATES],
    }


@dataclass(frozen=True)
class RecordKind:
    name: str
    fields: Tuple[FieldDescriptor, ...]
    seed: Callable[[object], FormState]
    build_payload: Callable[[FormState, OptionCache], Dict[str, object]]
    load_options: Callable[[LinearGateway, object], OptionCache]
    display_id: Callable[[object], str]
    sort: Callable[[Sequence[object]], List[object]]
    list_fragments: Callable[[Sequence[object], Optional[str]], Fragments]
    detail_fragments: Callable[[object], Fragments]

    def label(self, record: object) -> str:
        return f"{self.name.title()} {self.display_id(record)}"


ISSUE_KIND = RecordKind(
    name='issue',
    fields=ISSUE_EDIT_FIELDS,
    seed=seed_issue_form,
    build_payload=build_issue_payload,
    load_options=load_issue_options,
    display_id=lambda issue: issue.identifier,
    sort=sort_issues,
    list_fragments=issue_list_fragments,
    detail_fragments=issue_detail_fragments,
)
PROJECT_KIND = RecordKind(
    name='project',
    fields=PROJECT_EDIT_FIELDS,
    seed=seed_project_form,
    build_payload=build_project_payload,
    load_options=load_project_options,
    display_id=lambda project: project.name,
    sort=sort_projects,
    list_fragments=project_list_fragments,
    detail_fragments=project_detail_fragments,
)


class RecordEditor:
    """Field-by-field editor for one issue or project.

    The editor owns the form state, field cursor, assignee search buffer and
    save outcome. The canonical record belongs to the caller: it is only
    replaced (via ``on_update``) after a save succeeds, and ``on_back``
    discards any unsaved form edits.

    Modes: ``browse`` accepts input; ``edit-text`` (external editor open) and
    ``saving`` (mutation in flight) ignore all input.
    """

    def __init__(
        self,
        kind: RecordKind,
        record: object,
        gateway: LinearGateway,
        on_back: Callable[[], None],
        on_update: Callable[[object], None],
        launcher: Callable[[str, str], str] = open_editor,
        on_change: Optional[Callable[[], None]] = None,
    ):
        self.kind = kind
        self.record = record
        self.gateway = gateway
        self.on_back = on_back
        self.on_update = on_update
        self.launcher = launcher
        self.on_change = on_change
        self.fields = kind.fields
        self.form: FormState = kind.seed(record)
        self.options: OptionCache = {}
        self.ready = False
        self.cursor = 0
        self.mode = MODE_BROWSE
        self.search = ''
        self.outcome: Optional[Tuple[str, str]] = None
        self.load_error: Optional[str] = None

    @property
    def active_field(self) -> FieldDescriptor:
        return self.fields[self.cursor]

    @property
    def idle(self) -> bool:
        return self.mode == MODE_BROWSE

    def _changed(self) -> None:
        if self.on_change:
            self.on_change()

    def set_options(self, options: OptionCache) -> None:
        self.options = {k: list(v) for k, v in options.items()}
        self.ready = True
        self._changed()

    async def load_options(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            options = await loop.run_in_executor(None, lambda: self.kind.load_options(self.gateway, self.record))
        except Exception as exc:
            logger.exception("Loading %s options failed", self.kind.name)
            self.load_error = f"Error: {exc}"
            self.outcome = (self.load_error, OUTCOME_ERROR)
            self._changed()
        else:
            self.set_options(options)

    def cancel(self) -> None:
        if not self.idle:
            return
        self.on_back()

    def move(self, delta: int) -> None:
        if not self.idle:
            return
        self.cursor = max(0, min(len(self.fields) - 1, self.cursor + delta))
        self.search = ''
        self.outcome = None
        self._changed()

    def filtered_options(self, fld: Optional[FieldDescriptor] = None) -> List[Option]:
        fld = fld or self.active_field
        opts = list(self.options.get(fld.options_key or '') or [])
        if not (fld.searchable and self.search):
            return opts
        needle = self.search.lower()
        matches = [o for o in opts if needle in o.name.lower()]
        return sorted(matches, key=lambda o: (o.name.lower(), o.name))

    def cycle(self, delta: int) -> None:
        """Step a select field to its previous/next option; a no-op at either edge."""
        if not (self.idle and self.ready):
            return
        fld = self.active_field
        if fld.kind == FIELD_NUMERIC:
            values: List[object] = list(fld.levels)
        elif fld.kind == FIELD_SELECT:
            values = [o.name for o in self.filtered_options(fld)]
        else:
            return
        current = self.form.get(fld.key)
        idx = values.index(current) if current in values else -1
        if delta < 0 and idx <= 0:
            return
        target = idx + delta
        if not (0 <= target < len(values)):
            return
        self.form[fld.key] = values[target]
        self._changed()

    def type_search(self, ch: str) -> None:
        if not (self.idle and self.ready and self.active_field.searchable):
            return
        if len(ch) != 1 or not (ch.isascii() and ch.isalnum()):
            return
        self.search += ch
        self._snap_to_first_match()

    def backspace_search(self) -> None:
        if not (self.idle and self.ready and self.active_field.searchable) or not self.search:
            return
        self.search = self.search[:-1]
        self._snap_to_first_match()

    def _snap_to_first_match(self) -> None:
        matches = self.filtered_options()
        if matches:
            self.form[self.active_field.key] = matches[0].name
        self._changed()

    def request_text_edit(self) -> Optional[Callable[[], bool]]:
        """Enter edit-text mode and return the blocking editor call, or None if not applicable."""
        if not self.idle or self.active_field.kind not in TEXT_KINDS:
            return None
        self.mode = MODE_EDIT_TEXT
        self._changed()
        return self._run_text_edit

    def _run_text_edit(self) -> bool:
        fld = self.active_field
        ext = 'md' if fld.kind == FIELD_MULTILINE else 'txt'
        try:
            new_value = self.launcher(str(self.form.get(fld.key) or ''), ext)
        except EditorError as exc:
            logger.error("Editor failed for field %s: %s", fld.key, exc)
            print(f"Editor error: {exc}", file=sys.stderr)
            return False
        else:
            self.form[fld.key] = new_value
            return True
        finally:
            self.mode = MODE_BROWSE
            self._changed()

    def edit_active_field(self) -> bool:
        run = self.request_text_edit()
        return run() if run else False

    def request_save(self) -> Optional[Awaitable[None]]:
        """Enter saving mode and return the save coroutine; None while busy or not ready."""
        if not (self.idle and self.ready):
            return None
        self.mode = MODE_SAVING
        self.outcome = None
        self._changed()
        return self._save(self.kind.build_payload(self.form, self.options))

    async def _save(self, payload: Dict[str, object]) -> None:
        loop = asyncio.get_running_loop()
        noun = self.kind.name
        record_id = getattr(self.record, 'id')
        try:
            updated = await loop.run_in_executor(None, lambda: self.gateway.update_one(noun, record_id, payload))
        except Exception as exc:
            logger.exception("Saving %s %s failed", noun, record_id)
            self.outcome = (f"Error: {exc}", OUTCOME_ERROR)
        else:
            if updated is None:
                self.outcome = (f"Failed to save {noun}", OUTCOME_ERROR)
            else:
                self.record = updated
                self.form = self.kind.seed(updated)
                self.on_update(updated)
                stamp = dt.datetime.now().strftime('%H:%M:%S')
                self.outcome = (f"{self.kind.label(updated)} saved at {stamp}", OUTCOME_SUCCESS)
        finally:
            self.mode = MODE_BROWSE
            self._changed()

    def display_value(self, fld: FieldDescriptor) -> str:
        value = self.form.get(fld.key)
        if fld.options_key == 'states':
            return status_label(str(value or ''))
        if fld.kind == FIELD_NUMERIC:
            return priority_label(value)
        text = str(value if value is not None else '')
        if fld.searchable and self.search and fld is self.active_field:
            text = f"{text} (search: {self.search})"
        return text


EDITOR_WIDTHS = (1, 14, 52, 30)


def editor_fragments(editor: RecordEditor) -> Fragments:
    kind = editor.kind
    frags: Fragments = [
        ('class:hint', "Press 's' to save, 'q' or 'ESC' to cancel, ↑↓ to navigate\n\n"),
        ('class:title', f"Editing {kind.name.title()}: {kind.display_id(editor.record)}\n\n"),
        ('class:banner', f"{kind.name.title()} Data"),
        ('', '\n'),
    ]
    rows = []
    for idx, fld in enumerate(editor.fields):
        is_active = idx == editor.cursor
        rows.append(['▶' if is_active else ' ', fld.label, editor.display_value(fld), fld.help if is_active else ''])
    frags += table_fragments(['>', 'Field', 'Value', 'Help'], rows, EDITOR_WIDTHS,
                             active=editor.cursor, rule_every_row=True)
    if not editor.ready and editor.outcome is None:
        if editor.load_error:
            frags += [('', '\n'), ('class:editor.error', editor.load_error)]
        else:
            frags += [('', '\n'), ('class:editor.loading', 'Loading options…')]
    if editor.mode == MODE_EDIT_TEXT:
        frags += [('', '\n'), ('class:editor.busy', 'Opening editor... (save and quit to continue)')]
    elif editor.mode == MODE_SAVING:
        frags += [('', '\n'), ('class:editor.saving', f"Saving {kind.label(editor.record)}...")]
    elif editor.outcome:
        text, outcome_kind = editor.outcome
        style = 'class:editor.success' if outcome_kind == OUTCOME_SUCCESS else 'class:editor.error'
        frags += [('', '\n'), (style, text)]
    return frags


# -----------------------------
# Navigator / TUI
# -----------------------------
VIEW_LIST = 'list'
VIEW_DETAILS = 'details'
VIEW_EDIT = 'edit'


class Navigator:
    """Owns the record collection, the selected record and the active view."""

    def __init__(self, kind: RecordKind, records: Sequence[object], gateway: LinearGateway,
                 single: bool = False, launcher: Callable[[str, str], str] = open_editor):
        self.kind = kind
        self.records: List[object] = list(records)
        self.gateway = gateway
        self.single = single
        self.launcher = launcher
        self.view = VIEW_DETAILS if single else VIEW_LIST
        self.current: Optional[object] = self.records[0] if single and self.records else None
        self.editor: Optional[RecordEditor] = None
        self.editor_origin = self.view
        self.exit_requested = False
        self.on_change: Optional[Callable[[], None]] = None

    def _changed(self) -> None:
        if self.on_change:
            self.on_change()

    def ordered(self) -> List[object]:
        return self.kind.sort(self.records)

    def selected(self) -> Optional[object]:
        rows = self.ordered()
        if self.current is not None:
            cur_id = getattr(self.current, 'id')
            for row in rows:
                if getattr(row, 'id') == cur_id:
                    return row
            if self.single:
                return self.current
        return rows[0] if rows else None

    def move(self, delta: int) -> None:
        rows = self.ordered()
        if not rows:
            return
        sel = self.selected()
        ids = [getattr(r, 'id') for r in rows]
        idx = ids.index(getattr(sel, 'id')) if sel is not None and getattr(sel, 'id') in ids else 0
        self.current = rows[max(0, min(len(rows) - 1, idx + delta))]

    def open_details(self) -> None:
        sel = self.selected()
        if sel is None:
            return
        self.current = sel
        self.view = VIEW_DETAILS

    def open_editor(self) -> Optional[Awaitable[None]]:
        """Switch to the edit view; returns the option-loading coroutine to schedule."""
        sel = self.selected()
        if sel is None:
            return None
        self.current = sel
        self.editor_origin = self.view
        self.view = VIEW_EDIT
        self.editor = RecordEditor(
            self.kind, sel, self.gateway,
            on_back=self.close_editor,
            on_update=self.handle_update,
            launcher=self.launcher,
            on_change=self._changed,
        )
        return self.editor.load_options()

    def close_editor(self) -> None:
        self.editor = None
        self.view = self.editor_origin
        self._changed()

    def handle_update(self, record: object) -> None:
        rec_id = getattr(record, 'id')
        self.current = record
        self.records = [record if getattr(r, 'id') == rec_id else r for r in self.records]

    def back(self) -> None:
        if self.view == VIEW_DETAILS and not self.single:
            self.view = VIEW_LIST
        elif self.view in (VIEW_LIST, VIEW_DETAILS):
            self.exit_requested = True

    def fragments(self) -> Fragments:
        if self.view == VIEW_EDIT and self.editor is not None:
            return editor_fragments(self.editor)
        sel = self.selected()
        if self.view == VIEW_DETAILS and sel is not None:
            return self.kind.detail_fragments(sel)
        return self.kind.list_fragments(self.ordered(), getattr(sel, 'id', None))


async def _edit_in_terminal(run: Callable[[], bool]) -> None:
    await run_in_terminal(run)


def build_key_bindings(nav: Navigator) -> KeyBindings:
    kb = KeyBindings()
    is_list = Condition(lambda: nav.view == VIEW_LIST)
    is_details = Condition(lambda: nav.view == VIEW_DETAILS)
    is_browsing = Condition(lambda: nav.view in (VIEW_LIST, VIEW_DETAILS))
    is_editor_idle = Condition(lambda: nav.view == VIEW_EDIT and nav.editor is not None and nav.editor.idle)
    is_search_field = Condition(
        lambda: nav.view == VIEW_EDIT and nav.editor is not None and nav.editor.idle
        and nav.editor.active_field.searchable
    )

    @kb.add('c-c')
    def _(event):
        event.app.exit()

    @kb.add('q', filter=is_browsing)
    @kb.add('escape', filter=is_details)
    def _(event):
        nav.back()
        if nav.exit_requested:
            event.app.exit()

    @kb.add('up', filter=is_list)
    def _(event):
        nav.move(-1)

    @kb.add('down', filter=is_list)
    def _(event):
        nav.move(1)

    @kb.add('enter', filter=is_list)
    def _(event):
        nav.open_details()

    @kb.add('e', filter=is_browsing)
    def _(event):
        coro = nav.open_editor()
        if coro is not None:
            event.app.create_background_task(coro)

    # editor
    @kb.add('q', filter=is_editor_idle)
    @kb.add('escape', filter=is_editor_idle)
    def _(event):
        nav.editor.cancel()

    @kb.add('up', filter=is_editor_idle)
    def _(event):
        nav.editor.move(-1)

    @kb.add('down', filter=is_editor_idle)
    def _(event):
        nav.editor.move(1)

    @kb.add('left', filter=is_editor_idle)
    def _(event):
        nav.editor.cycle(-1)

    @kb.add('right', filter=is_editor_idle)
    def _(event):
        nav.editor.cycle(1)

    @kb.add('enter', filter=is_editor_idle)
    def _(event):
        run = nav.editor.request_text_edit()
        if run is not None:
            event.app.create_background_task(_edit_in_terminal(run))

    @kb.add('s', filter=is_editor_idle)
    def _(event):
        coro = nav.editor.request_save()
        if coro is not None:
            event.app.create_background_task(coro)

    @kb.add(Keys.Any, filter=is_search_field)
    def _(event):
        nav.editor.type_search(event.data)

    @kb.add('backspace', filter=is_search_field)
    def _(event):
        nav.editor.backspace_search()

    return kb


def run_navigator(nav: Navigator) -> None:
    """Full-screen browser over ``nav``: list -> details -> edit."""
    body = Window(
        content=FormattedTextControl(text=nav.fragments, focusable=True, show_cursor=False),
        wrap_lines=False,
        always_hide_cursor=True,
    )
    app = Application(
        layout=Layout(HSplit([body])),
        key_bindings=build_key_bindings(nav),
        full_screen=True,
        style=Style.from_dict(BASE_THEME_STYLE),
    )
    nav.on_change = app.invalidate
    logger.debug("Starting %s navigator with %d records", nav.kind.name, len(nav.records))
    app.run()


# -----------------------------
# Commands
# -----------------------------
CSV_INPUT_COLUMNS = ('title', 'description', 'state', 'assignee', 'project', 'team')
CSV_REPORT_COLUMNS = ('title', 'identifier', 'url', 'status', 'error')


def ask(question: str, default: Optional[str] = None) -> str:
    suffix = f" ({default})" if default else ""
    answer = pt_prompt(f"{question}{suffix}: ")
    return answer.strip() or (default or "")


def ask_secret(question: str) -> str:
    return pt_prompt(question, is_password=True).strip()


def choose_option(label: str, options: Sequence[Option], question: str, default: str,
                  allow_none: bool = False) -> Optional[Option]:
    """Numbered picker; returns None for 0 (when allowed) or an out-of-range answer."""
    print(f"\nAvailable {label}:")
    for i, opt in enumerate(options, start=1):
        print(f"{i}. {opt.name}")
    raw = ask(question, default)
    try:
        idx = int(raw)
    except ValueError:
        return None
    if allow_none and idx == 0:
        return None
    if 1 <= idx <= len(options):
        return options[idx - 1]
    return None


def pick_team(teams: Sequence[Option], name: Optional[str]) -> Option:
    if not teams:
        raise LinearError("No teams available in this workspace")
    if name:
        team = find_option(teams, name)
        if team is None:
            raise LinearError(f"Team {name!r} not found")
        return team
    return teams[0]


def pick_state(states: Sequence[Option], name: Optional[str]) -> Optional[Option]:
    """Named state, else Backlog, else the team's first state."""
    if name:
        match = find_option(states, name)
        if match is not None:
            return match
        logger.warning("State %r not found; using default", name)
    return find_option(states, 'Backlog') or (states[0] if states else None)


def _lookup_or_warn(options: Sequence[Option], name: Optional[str], what: str) -> Optional[Option]:
    if not name:
        return None
    match = find_option(options, name)
    if match is None:
        logger.warning("%s %r not found; leaving it unset", what, name)
        print(f"Warning: {what} {name!r} not found; leaving it unset", file=sys.stderr)
    return match


def _validate_date(value: Optional[str], what: str) -> Optional[str]:
    if not value:
        return None
    try:
        dt.date.fromisoformat(value)
    except ValueError:
        raise ValueError(f"Invalid {what} {value!r} (expected YYYY-MM-DD)")
    return value


def _print_issue(issue: Issue) -> None:
    print(plain_text(issue_detail_fragments(issue)[1:]))


def _gateway_from_args(args: argparse.Namespace) -> LinearGateway:
    return LinearGateway(resolve_api_key(load_config(args.config)))


def cmd_init(args: argparse.Namespace) -> int:
    print('Please enter your Linear API key:')
    print('You can create a new API key under "Personal API keys" in Linear: Settings > Account > Security & access')
    print('The API key will be stored in your local configuration')
    print(f"Config location: {args.config}\n")
    api_key = ask_secret('API Key: ')
    if not api_key:
        print('Error: API key is required', file=sys.stderr)
        return 1
    viewer = LinearGateway(api_key).viewer()
    save_api_key(args.config, api_key)
    logger.info("Stored API key for %s", viewer.get('email') or viewer.get('name'))
    print('\n✅ Successfully initialized Linear CLI!')
    print(f"Authenticated as {viewer.get('name') or viewer.get('email') or 'unknown user'}.")
    print('You can now use the CLI to interact with your Linear workspace.')
    return 0


def cmd_issues_list(args: argparse.Namespace) -> int:
    gateway = _gateway_from_args(args)
    issues = gateway.fetch_many('issue', build_issue_filter(args.project, args.assignee, args.status))
    logger.info("Fetched %d issues", len(issues))
    run_navigator(Navigator(ISSUE_KIND, issues, gateway))
    return 0


def cmd_issues_view(args: argparse.Namespace) -> int:
    gateway = _gateway_from_args(args)
    issue = gateway.fetch_one('issue', args.label)
    run_navigator(Navigator(ISSUE_KIND, [issue], gateway, single=True))
    return 0


def create_issue_from_flags(gateway: LinearGateway, defaults: Dict[str, str], args: argparse.Namespace) -> int:
    values: Dict[str, Optional[str]] = dict(defaults)
    for key in ('title', 'description', 'state', 'assignee', 'project', 'team'):
        if getattr(args, key, None):
            values[key] = getattr(args, key)
    title = values.get('title')
    if not title:
        print('Title is required', file=sys.stderr)
        return 1
    team = pick_team(gateway.teams(), values.get('team'))
    state = pick_state(gateway.team_states(team.id), values.get('state'))
    payload: Dict[str, object] = {'title': title, 'teamId': team.id}
    if values.get('description'):
        payload['description'] = values['description']
    if state is not None:
        payload['stateId'] = state.id
    if values.get('assignee'):
        assignee = _lookup_or_warn(gateway.users(), values['assignee'], 'Assignee')
        if assignee is not None:
            payload['assigneeId'] = assignee.id
    if values.get('project'):
        project = _lookup_or_warn(gateway.project_options(), values['project'], 'Project')
        if project is not None:
            payload['projectId'] = project.id
    issue = gateway.create_one('issue', payload)
    save_defaults({
        'state': values.get('state'),
        'assignee': values.get('assignee'),
        'project': values.get('project'),
        'team': values.get('team'),
    })
    _print_issue(issue)
    return 0


def create_issue_interactive(gateway: LinearGateway, defaults: Dict[str, str], team_name: Optional[str]) -> int:
    print('Creating a new issue (press Ctrl+C to cancel)\n')
    title = ask('Title', defaults.get('title'))
    if not title:
        print('Title is required', file=sys.stderr)
        return 1
    seed = ask('Description (will open editor)', defaults.get('description'))
    description = open_editor(seed, 'md')

    team = pick_team(gateway.teams(), team_name or defaults.get('team'))
    states = gateway.team_states(team.id)
    backlog_idx = next((i for i, s in enumerate(states) if s.name == 'Backlog'), 0)
    state = choose_option('states', states, 'Select state number', str(backlog_idx + 1))
    if state is None:
        print('Invalid state selection', file=sys.stderr)
        return 1
    assignee = choose_option('assignees', gateway.users(), 'Select assignee number (0 for none)', '0', allow_none=True)
    project = choose_option('projects', gateway.project_options(), 'Select project number (0 for none)', '0',
                            allow_none=True)
    print(f"\nTeam: {team.name}")

    payload: Dict[str, object] = {'title': title, 'teamId': team.id, 'stateId': state.id}
    if description:
        payload['description'] = description
    if assignee is not None:
        payload['assigneeId'] = assignee.id
    if project is not None:
        payload['projectId'] = project.id
    issue = gateway.create_one('issue', payload)
    save_defaults({
        'state': state.name,
        'assignee': assignee.name if assignee else None,
        'project': project.name if project else None,
        'team': team.name,
    })
    _print_issue(issue)
    return 0


@dataclass
class BulkResult:
    successes: List[Dict[str, str]] = field(default_factory=list)
    errors: List[Dict[str, str]] = field(default_factory=list)

    @property
    def rows(self) -> List[Dict[str, str]]:
        return self.successes + self.errors


def read_issue_csv(path: str) -> List[Dict[str, str]]:
    """Rows keyed by lower-cased known column name; values trimmed, blank lines skipped.

    Columns outside CSV_INPUT_COLUMNS are dropped.
    """
    rows: List[Dict[str, str]] = []
    with open(path, 'r', newline='', encoding='utf-8-sig') as f:
        for raw in csv.DictReader(f, skipinitialspace=True):
            row = {}
            for k, v in raw.items():
                if not isinstance(k, str) or isinstance(v, list):
                    continue
                key = k.strip().lstrip('\ufeff').lower()
                if key in CSV_INPUT_COLUMNS:
                    row[key] = (v or '').strip()
            if any(row.values()):
                rows.append(row)
    return rows


def _clean_description(value: Optional[str]) -> str:
    text = (value or '').lstrip('\ufeff').strip()
    if text in ('""', "''"):
        return ''
    return text


def bulk_create_issues(gateway: LinearGateway, records: Sequence[Dict[str, str]],
                       team_name: Optional[str] = None) -> BulkResult:
    """Create one issue per row; per-row failures are collected, never raised.

    The default team is resolved once for the batch; a row's own ``team`` wins.
    """
    teams = gateway.teams()
    default_team = pick_team(teams, team_name)
    states_by_team: Dict[str, List[Option]] = {}
    users: Optional[List[Option]] = None
    projects: Optional[List[Option]] = None
    result = BulkResult()

    for record in records:
        title = record.get('title', '')
        try:
            if not title:
                raise ValueError('Title is required')
            team = default_team
            if record.get('team'):
                team = _lookup_or_warn(teams, record['team'], 'Team') or default_team
            payload: Dict[str, object] = {'title': title, 'teamId': team.id}
            description = _clean_description(record.get('description'))
            if description:
                payload['description'] = description
            if record.get('state'):
                if team.id not in states_by_team:
                    states_by_team[team.id] = gateway.team_states(team.id)
                state = _lookup_or_warn(states_by_team[team.id], record['state'], 'State')
                if state is not None:
                    payload['stateId'] = state.id
            if record.get('assignee'):
                if users is None:
                    users = gateway.users()
                assignee = _lookup_or_warn(users, record['assignee'], 'Assignee')
                if assignee is not None:
                    payload['assigneeId'] = assignee.id
            if record.get('project'):
                if projects is None:
                    projects = gateway.project_options()
                project = _lookup_or_warn(projects, record['project'], 'Project')
                if project is not None:
                    payload['projectId'] = project.id
            issue = gateway.create_one('issue', payload)
        except (LinearError, ValueError) as exc:
            logger.warning("Bulk create failed for %r: %s", title, exc)
            result.errors.append({'title': title, 'identifier': '', 'url': '', 'status': 'error', 'error': str(exc)})
        else:
            result.successes.append({
                'title': title,
                'identifier': issue.identifier,
                'url': issue.url,
                'status': 'success',
                'error': '',
            })
    return result


def format_bulk_report(result: BulkResult) -> str:
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=CSV_REPORT_COLUMNS, quoting=csv.QUOTE_ALL, lineterminator='\n')
    writer.writeheader()
    writer.writerows(result.rows)
    return buf.getvalue()


def create_issues_from_csv(gateway: LinearGateway, csv_path: str, team_name: Optional[str],
                           output: Optional[str]) -> int:
    result = bulk_create_issues(gateway, read_issue_csv(csv_path), team_name)
    report = format_bulk_report(result)
    if output:
        with open(output, 'w', encoding='utf-8', newline='') as f:
            f.write(report)
    else:
        sys.stdout.write(report)
    print(f"\nCreated {len(result.successes)} issues successfully", file=sys.stderr)
    if result.errors:
        print(f"Failed to create {len(result.errors)} issues", file=sys.stderr)
    return 0


def cmd_issues_create(args: argparse.Namespace) -> int:
    gateway = _gateway_from_args(args)
    defaults = load_defaults()
    if args.csv:
        return create_issues_from_csv(gateway, args.csv, args.team, args.output)
    if args.interactive:
        return create_issue_interactive(gateway, defaults, args.team)
    return create_issue_from_flags(gateway, defaults, args)


def cmd_projects_list(args: argparse.Namespace) -> int:
    gateway = _gateway_from_args(args)
    projects = gateway.fetch_many('project', build_project_filter(args.team, args.lead, args.state))
    logger.info("Fetched %d projects", len(projects))
    run_navigator(Navigator(PROJECT_KIND, projects, gateway))
    return 0


def cmd_projects_view(args: argparse.Namespace) -> int:
    gateway = _gateway_from_args(args)
    project = gateway.fetch_one('project', args.id)
    run_navigator(Navigator(PROJECT_KIND, [project], gateway, single=True))
    return 0


def _create_project(gateway: LinearGateway, name: str, description: Optional[str], team: Option,
                    lead: Optional[Option], state: Optional[str], start_date: Optional[str],
                    target_date: Optional[str]) -> int:
    payload: Dict[str, object] = {'name': name, 'teamIds': [team.id]}
    if description:
        payload['description'] = description
    if lead is not None:
        payload['leadId'] = lead.id
    if state:
        payload['state'] = state
    if start_date:
        payload['startDate'] = _validate_date(start_date, 'start date')
    if target_date:
        payload['targetDate'] = _validate_date(target_date, 'target date')
    project = gateway.create_one('project', payload)
    print(f"\nProject created successfully: {project.name} ({project.id})")
    return 0


def cmd_projects_create(args: argparse.Namespace) -> int:
    gateway = _gateway_from_args(args)
    if args.interactive:
        print('Creating a new project (press Ctrl+C to cancel)\n')
        name = ask('Project name')
        if not name:
            print('Project name is required', file=sys.stderr)
            return 1
        description = ask('Description')
        lead = choose_option('leads', gateway.users(), 'Select lead number (0 for none)', '0', allow_none=True)
        teams = gateway.teams()
        team = choose_option('teams', teams, 'Select team number', '1')
        if team is None:
            print('Invalid team selection', file=sys.stderr)
            return 1
        start_date = ask('Start date (YYYY-MM-DD)')
        target_date = ask('Target date (YYYY-MM-DD)')
        return _create_project(gateway, name, description, team, lead, None, start_date, target_date)

    if not args.name:
        print('Project name is required', file=sys.stderr)
        return 1
    lead = _lookup_or_warn(gateway.users(), args.lead, 'Lead') if args.lead else None
    team = pick_team(gateway.teams(), args.team)
    return _create_project(gateway, args.name, args.description, team, lead, args.state,
                           args.start_date, args.target_date)


# -----------------------------
# CLI
# -----------------------------
def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="linear", description="A terminal client for Linear")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    ap.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Path to YAML config holding api_key")
    ap.add_argument("--log-level", default="ERROR", help="File log level (DEBUG, INFO, WARNING, ERROR)")
    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init", help="Initialize the CLI with your Linear API key")
    p.set_defaults(func=cmd_init, doing="initializing Linear CLI")

    issues = sub.add_parser("issues", help="Manage Linear issues")
    isub = issues.add_subparsers(dest="issues_command", required=True)
    p = isub.add_parser("list", help="List issues")
    p.add_argument("-p", "--project", help="Filter by project name")
    p.add_argument("-a", "--assignee", help="Filter by assignee name")
    p.add_argument("-s", "--status", help="Filter by status")
    p.set_defaults(func=cmd_issues_list, doing="fetching issues")
    p = isub.add_parser("view", help="View an issue by its label (e.g. ABC-123)")
    p.add_argument("label", help="Issue label (e.g. ABC-123)")
    p.set_defaults(func=cmd_issues_view, doing="fetching issue")
    p = isub.add_parser("create", help="Create a new issue")
    p.add_argument("-t", "--title", help="Issue title")
    p.add_argument("-d", "--description", help="Issue description")
    p.add_argument("-s", "--state", help='Issue state (e.g. "Todo", "In Progress")')
    p.add_argument("-a", "--assignee", help="Assignee name")
    p.add_argument("-p", "--project", help="Project name")
    p.add_argument("-T", "--team", help="Team name")
    p.add_argument("-i", "--interactive", action="store_true", help="Create issue interactively")
    p.add_argument("--csv", metavar="FILE", help="Create issues from CSV file")
    p.add_argument("-o", "--output", metavar="FILE", help="Write CSV results to FILE (defaults to stdout)")
    p.set_defaults(func=cmd_issues_create, doing="creating issue")

    projects = sub.add_parser("projects", help="Manage Linear projects")
    psub = projects.add_subparsers(dest="projects_command", required=True)
    p = psub.add_parser("list", help="List projects")
    p.add_argument("-t", "--team", help="Filter by team name")
    p.add_argument("-l", "--lead", help="Filter by lead name")
    p.add_argument("-s", "--state", help="Filter by state")
    p.set_defaults(func=cmd_projects_list, doing="listing projects")
    p = psub.add_parser("view", help="View a project by its ID")
    p.add_argument("id", help="Project ID")
    p.set_defaults(func=cmd_projects_view, doing="fetching project")
    p = psub.add_parser("create", help="Create a new project")
    p.add_argument("-n", "--name", help="Project name")
    p.add_argument("-d", "--description", help="Project description")
    p.add_argument("-s", "--state", help='Project state (e.g. "planned", "started")')
    p.add_argument("-l", "--lead", help="Project lead name")
    p.add_argument("-t", "--team", help="Team name")
    p.add_argument("--start-date", help="Project start date (YYYY-MM-DD)")
    p.add_argument("--target-date", help="Project target date (YYYY-MM-DD)")
    p.add_argument("-i", "--interactive", action="store_true", help="Create project interactively")
    p.set_defaults(func=cmd_projects_create, doing="creating project")
    return ap


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)
    try:
        return int(args.func(args) or 0)
    except ConfigError as exc:
        logger.error("%s", exc)
        print(str(exc), file=sys.stderr)
        return 1
    except (LinearError, EditorError, ValueError, OSError) as exc:
        logger.exception("Command failed while %s", args.doing)
        print(f"Error {args.doing}:", file=sys.stderr)
        print(str(exc), file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nCancelled", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
