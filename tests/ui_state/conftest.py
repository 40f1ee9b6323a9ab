from types import SimpleNamespace

import pytest

import linear_tui as lt

from helpers import FakeGateway, make_issue, run_coro


class DummyApp:
    def __init__(self):
        self.background_tasks = []
        self.exited = False

    def exit(self):
        self.exited = True

    def invalidate(self):
        pass

    def create_background_task(self, coro):
        self.background_tasks.append(coro)
        return coro


def _binding_matches(binding, key):
    return binding.keys == (key,) and binding.filter()


@pytest.fixture
def ui_context():
    """Navigator over three issues with real key bindings and a recording app."""
    gateway = FakeGateway()
    issues = [
        gateway.track(make_issue(id='issue-1', identifier='ENG-1', title='Fix login', priority=2)),
        gateway.track(make_issue(id='issue-2', identifier='ENG-2', title='Ship it',
                                 state=lt.Option('state-progress', 'In Progress'), priority=1)),
        gateway.track(make_issue(id='issue-3', identifier='ENG-3', title='Old thing',
                                 state=lt.Option('state-done', 'Done'), priority=4,
                                 completed_at='2024-01-02T00:00:00.000Z')),
    ]
    edited = []

    def launcher(seed, ext):
        edited.append((seed, ext))
        return f'{seed}!'

    return _context(lt.Navigator(lt.ISSUE_KIND, issues, gateway, launcher=launcher), gateway, edited)


def _context(nav, gateway, edited=None):
    app = DummyApp()
    nav.on_change = app.invalidate
    kb = lt.build_key_bindings(nav)

    def press(key, data=''):
        for binding in reversed(kb.bindings):
            if _binding_matches(binding, key):
                return binding.handler(SimpleNamespace(data=data, app=app))
        raise AssertionError(f'No active binding for {key!r} in view {nav.view!r}')

    def active(key):
        return [b for b in kb.bindings if _binding_matches(b, key)]

    def run_pending(name=None):
        for coro in list(app.background_tasks):
            if name is None or coro.cr_code.co_name == name:
                app.background_tasks.remove(coro)
                run_coro(coro)

    def pending_names():
        return [coro.cr_code.co_name for coro in app.background_tasks]

    return SimpleNamespace(
        nav=nav,
        gateway=gateway,
        app=app,
        kb=kb,
        press=press,
        active=active,
        run_pending=run_pending,
        pending_names=pending_names,
        edited=edited if edited is not None else [],
    )


@pytest.fixture
def make_context():
    return _context
