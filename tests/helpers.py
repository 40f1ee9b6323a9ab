import asyncio
import dataclasses
from types import SimpleNamespace

import linear_tui as lt

USERS = [
    lt.Option('user-alice', 'Alice Smith'),
    lt.Option('user-bob', 'Bob Jones'),
    lt.Option('user-alex', 'Alex Kim'),
]
TEAMS = [
    lt.Option('team-eng', 'Engineering'),
    lt.Option('team-ops', 'Operations'),
]
PROJECTS = [
    lt.Option('proj-apollo', 'Apollo'),
    lt.Option('proj-gemini', 'Gemini'),
]
RECORD_TYPES = {'issue': lt.Issue, 'project': lt.Project}
STATES = [
    lt.Option('state-backlog', 'Backlog'),
    lt.Option('state-todo', 'Todo'),
    lt.Option('state-progress', 'In Progress'),
    lt.Option('state-done', 'Done'),
]


def make_issue(**overrides) -> lt.Issue:
    base = dict(
        id='issue-1',
        identifier='ENG-1',
        title='Fix login',
        description='Users cannot log in',
        priority=2,
        url='https://linear.app/acme/issue/ENG-1',
        created_at='2024-01-10T10:00:00.000Z',
        updated_at='2024-01-11T10:00:00.000Z',
        completed_at=None,
        state=lt.Option('state-todo', 'Todo'),
        assignee=lt.Option('user-bob', 'Bob Jones'),
        team=lt.Option('team-eng', 'Engineering'),
        project=lt.Option('proj-apollo', 'Apollo'),
    )
    base.update(overrides)
    return lt.Issue(**base)


def make_project(**overrides) -> lt.Project:
    base = dict(
        id='project-1',
        name='Apollo',
        description='Moonshot',
        state='started',
        url='https://linear.app/acme/project/apollo',
        created_at='2024-01-01T00:00:00.000Z',
        started_at='2024-02-01T00:00:00.000Z',
        start_date=None,
        target_date='2024-06-30',
        lead=lt.Option('user-alice', 'Alice Smith'),
        team=lt.Option('team-eng', 'Engineering'),
    )
    base.update(overrides)
    return lt.Project(**base)


def issue_node(**overrides) -> dict:
    node = {
        'id': 'issue-1',
        'identifier': 'ENG-1',
        'title': 'Fix login',
        'description': 'Users cannot log in',
        'priority': 2,
        'url': 'https://linear.app/acme/issue/ENG-1',
        'createdAt': '2024-01-10T10:00:00.000Z',
        'updatedAt': '2024-01-11T10:00:00.000Z',
        'completedAt': None,
        'state': {'id': 'state-todo', 'name': 'Todo', 'type': 'unstarted'},
        'assignee': {'id': 'user-bob', 'name': 'Bob Jones'},
        'team': {'id': 'team-eng', 'name': 'Engineering', 'key': 'ENG'},
        'project': {'id': 'proj-apollo', 'name': 'Apollo'},
    }
    node.update(overrides)
    return node


def _by_id(options, option_id, fallback):
    for opt in options:
        if opt.id == option_id:
            return opt
    return fallback


def apply_issue_payload(issue: lt.Issue, payload: dict) -> lt.Issue:
    """What Linear would return after applying ``payload`` to ``issue``."""
    return dataclasses.replace(
        issue,
        title=payload.get('title', issue.title),
        description=payload.get('description', issue.description),
        priority=payload.get('priority', issue.priority),
        state=_by_id(STATES, payload.get('stateId'), issue.state),
        assignee=_by_id(USERS, payload.get('assigneeId'), issue.assignee),
        team=_by_id(TEAMS, payload.get('teamId'), issue.team),
        project=_by_id(PROJECTS, payload.get('projectId'), issue.project),
    )


class FakeGateway:
    """In-memory stand-in for LinearGateway with call recording."""

    def __init__(self, *, users=None, teams=None, projects=None, states=None,
                 update_result=apply_issue_payload, update_error=None, create_error=None):
        self._users = list(USERS if users is None else users)
        self._teams = list(TEAMS if teams is None else teams)
        self._projects = list(PROJECTS if projects is None else projects)
        self._states = list(STATES if states is None else states)
        self.update_result = update_result
        self.update_error = update_error
        self.create_error = create_error
        self.update_calls = []
        self.create_calls = []
        self.state_calls = []
        self.fetch_calls = []
        self.records = {}

    def track(self, record):
        self.records[record.id] = record
        return record

    def fetch_many(self, kind, filter=None):
        self.fetch_calls.append((kind, filter))
        return [r for r in self.records.values() if isinstance(r, RECORD_TYPES[kind])]

    def fetch_one(self, kind, id_or_label):
        self.fetch_calls.append((kind, id_or_label))
        for record in self.records.values():
            if id_or_label in (record.id, getattr(record, 'identifier', None)):
                return record
        raise lt.LinearError(f'{kind.title()} {id_or_label} not found')

    def viewer(self):
        return {'id': 'user-alice', 'name': 'Alice Smith', 'email': 'alice@example.com'}

    def users(self):
        return list(self._users)

    def teams(self):
        return list(self._teams)

    def project_options(self):
        return list(self._projects)

    def team_states(self, team_id):
        self.state_calls.append(team_id)
        return list(self._states)

    def update_one(self, kind, record_id, payload):
        self.update_calls.append((kind, record_id, payload))
        if self.update_error is not None:
            raise self.update_error
        if callable(self.update_result):
            return self.update_result(self.records[record_id], payload)
        return self.update_result

    def create_one(self, kind, payload):
        self.create_calls.append((kind, payload))
        if callable(self.create_error):
            error = self.create_error(payload)
            if error is not None:
                raise error
        elif self.create_error is not None:
            raise self.create_error
        n = len(self.create_calls)
        if kind == 'project':
            return make_project(id=f'project-{n}', name=payload['name'])
        return make_issue(
            id=f'issue-{n}',
            identifier=f'ENG-{n}',
            title=payload['title'],
            url=f'https://linear.app/acme/issue/ENG-{n}',
        )


def run_coro(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def dummy_event(data='', app=None):
    return SimpleNamespace(data=data, app=app or SimpleNamespace(exit=lambda: None))


__all__ = [
    'USERS',
    'TEAMS',
    'PROJECTS',
    'STATES',
    'make_issue',
    'make_project',
    'issue_node',
    'apply_issue_payload',
    'FakeGateway',
    'run_coro',
    'dummy_event',
]
