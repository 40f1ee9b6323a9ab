import linear_tui as lt

from helpers import make_issue, make_project


def test_cell_helpers_handle_unicode():
    assert lt._sanitize_cell_text('line1\nline2') == 'line1 line2'
    assert lt._sanitize_cell_text(None) == ''

    text = '你好世界abc'
    truncated = lt._truncate(text, 6)
    assert truncated.endswith('…')
    assert lt._display_width(truncated) <= 6

    padded_double = lt._pad_display('你', 4)
    assert padded_double.startswith('你')
    assert lt._display_width(padded_double) == 4

    assert lt._display_width(lt._pad_display('🚀 In Progress', 12)) == 12


def test_table_fragments_box_drawing_and_cursor():
    frags = lt.table_fragments(['ID', 'Name'], [['1', 'one'], ['2', 'two']], (3, 5), active=1)
    lines = lt.plain_text(frags).split('\n')
    assert lines[0] == '┌─────┬───────┐'
    assert lines[1] == '│ ID  │ Name  │'
    assert lines[2] == '├─────┼───────┤'
    assert lines[-1] == '└─────┴───────┘'
    assert ('class:table.cursor', '│ 2   │ two   │\n') in frags
    assert ('class:table.row', '│ 1   │ one   │\n') in frags


def test_emoji_labels():
    assert lt.status_label('In Progress') == '🚀 In Progress'
    assert lt.status_label('Triage') == '❓ Triage'
    assert lt.priority_label(4) == '🔴 4'
    assert lt.priority_label(None) == '⚪ 0'


def test_format_date_handles_missing_and_plain_dates():
    assert lt.format_date(None) == 'Not set'
    assert lt.format_date('2024-06-30') == '6/30/2024'
    assert lt.format_date('garbage', 'N/A') == 'N/A'


def test_issue_list_fragments_mark_selection_and_fallbacks():
    issues = [
        make_issue(),
        make_issue(id='issue-2', identifier='ENG-2', title='Line\nbreak', assignee=None, team=None, project=None),
    ]
    frags = lt.issue_list_fragments(issues, 'issue-2')
    cursor_line = next(text for style, text in frags if style == 'class:table.cursor')
    assert '▶' in cursor_line
    assert 'ENG-2' in cursor_line
    assert 'Line break' in cursor_line
    assert 'Unassigned' in cursor_line
    assert 'No Team' in cursor_line
    assert 'No Project' in cursor_line
    assert lt.issue_list_fragments([], None) == [('class:table.empty', 'No issues found.')]


def test_issue_detail_fragments_include_url_and_description():
    text = lt.plain_text(lt.issue_detail_fragments(make_issue(description='')))
    assert 'Identifier' in text
    assert '📝 Todo' in text
    assert '🟡 2' in text
    assert 'https://linear.app/acme/issue/ENG-1' in text
    assert '--No description--' in text
    assert 'Completed' not in text

    done = make_issue(completed_at='2024-02-01T12:00:00.000Z')
    assert 'Completed' in lt.plain_text(lt.issue_detail_fragments(done))


def test_project_fragments():
    project = make_project(lead=None, target_date=None)
    listing = lt.plain_text(lt.project_list_fragments([project], project.id))
    assert 'Unassigned' in listing
    assert 'Not set' in listing
    details = lt.plain_text(lt.project_detail_fragments(project))
    assert 'Project Details' in details
    assert 'Moonshot' in details
    assert 'N/A' in details
