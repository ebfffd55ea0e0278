import pytest

from crm_e2e.actions import (
    clear_combobox,
    create_ticket,
    ensure_timesheet_exists,
    fill_activity,
    fill_autocomplete,
    select_combobox_option,
    select_first_option,
)
from crm_e2e.errors import ActionTimeoutError
from crm_e2e.retry import FailureReason, RetryConfig
from crm_e2e.test_data import ActivityData, TicketData

from fakes import FakePage

pytestmark = pytest.mark.protocol

BASE = "https://crm.test"
TICKETS_URL = BASE + "/dashboard/tickets-manager"
TIMESHEET_URL = BASE + "/dashboard/timesheet"
TOAST = '[data-sonner-toast]'
OPTION = '[role="option"]'
TIMESHEET_READY = ('button:has-text("Create Timesheet"), button:has-text("+ Timesheet"), '
                   'button:has-text("Add Activity"), button:has-text("+ Activity")')


def _labelled_combobox(label):
    return f'xpath=//label[contains(normalize-space(.), "{label}")]/following-sibling::*//button[@role="combobox"]'


# Comboboxes -------------------------------------------------------------------

def test_combobox_already_showing_the_option_is_not_clicked():
    page = FakePage(url=TICKETS_URL)
    page.add(_labelled_combobox("Status"), text="Assigned")

    result = select_combobox_option(page, "Status", "Assigned")

    assert result.success
    assert result.message == "'Assigned' already selected"
    assert page.clicks == []


def test_combobox_showing_a_longer_value_still_selects_the_option():
    page = FakePage(url=TICKETS_URL)
    chosen = []

    def open_list():
        page.add('[role="listbox"]')
        page.add(OPTION, text="Unassigned", on_click=lambda: chosen.append("Unassigned"))
        page.add(OPTION, text="Assigned", on_click=lambda: chosen.append("Assigned"))
    page.add(_labelled_combobox("Status"), text="Unassigned", on_click=open_list)

    result = select_combobox_option(page, "Status", "Assigned")

    assert result.success
    assert result.value == "Assigned"
    assert page.clicks[0] == _labelled_combobox("Status")
    assert chosen == ["Assigned"]


def test_exact_option_text_wins_over_longer_options():
    page = FakePage(url=TICKETS_URL)
    chosen = []

    def open_list():
        page.add(OPTION, text="Highest", on_click=lambda: chosen.append("Highest"))
        page.add(OPTION, text="High", on_click=lambda: chosen.append("High"))
        page.add('[role="option"]:text-is("High")', text="High", on_click=lambda: chosen.append("High"))
    page.add(_labelled_combobox("Priority"), text="Higher", on_click=open_list)

    result = select_combobox_option(page, "Priority", "High")

    assert result.success
    assert chosen == ["High"]
    assert page.clicks == [_labelled_combobox("Priority"), '[role="option"]:text-is("High")']


def test_missing_combobox_is_reported_not_raised():
    page = FakePage(url=TICKETS_URL)

    result = select_combobox_option(page, "Source", "Email", timeout_ms=1000)

    assert result.failure_reason is FailureReason.SELECTOR_NOT_FOUND
    assert "combobox 'Source'" in result.message


def test_dependent_combobox_waits_until_enabled():
    page = FakePage(url=TIMESHEET_URL)
    work_type = page.add("#work-type-combobox", text="Select work type", enabled_from=1.5)
    work_type.on_click = lambda: page.add(OPTION, text="Development")

    result = select_first_option(page, "work_type")

    assert result.success
    assert result.value == "Development"
    assert page.clock.now >= 1.5
    assert page.clicks == ["#work-type-combobox", OPTION]


def test_combobox_with_a_value_keeps_it():
    page = FakePage(url=TIMESHEET_URL)
    page.add("#project-combobox", text="Internal CRM")

    result = select_first_option(page, "project")

    assert result.value == "Internal CRM"
    assert page.clicks == []


def test_clear_combobox_clicks_the_selected_option():
    page = FakePage(url=TIMESHEET_URL)
    project = page.add("#project-combobox", text="Internal CRM")
    page.add('[role="option"][aria-selected="true"]', text="Internal CRM",
             on_click=lambda: setattr(project, "text", "Select project"))

    result = clear_combobox(page, "project")

    assert result.success
    assert result.message == "project cleared"
    assert page.clicks == ["#project-combobox", '[role="option"][aria-selected="true"]']


def test_fill_activity_skips_set_comboboxes_and_disabled_times():
    page = FakePage(url=TIMESHEET_URL)
    page.add("#project-combobox", text="Internal CRM")
    page.add("#work-type-combobox", text="Development")
    page.add("#activity-type-combobox", text="Meeting")
    page.add('input[type="time"][name*="start" i]')
    page.add('input[type="time"][name*="end" i]', enabled_from=None)
    page.add('textarea[placeholder*="description" i]')

    result = fill_activity(page, ActivityData(activity_type="Meeting", start_time="09:00", end_time="10:00",
                                              description="Sprint planning"))

    assert result.success
    assert page.clicks == []
    assert page.fills == {
        'input[type="time"][name*="start" i]': "09:00",
        'textarea[placeholder*="description" i]': "Sprint planning",
    }


# Autocomplete -----------------------------------------------------------------

def test_autocomplete_takes_first_suggestion():
    page = FakePage(url=TICKETS_URL)
    field = 'input[placeholder*="Search by name or phone" i]'
    page.add(field, on_click=lambda: page.add(OPTION, text="Test Contact (1234567890)", visible_from=0.5))

    result = fill_autocomplete(page, "Contact Phone", "1234567890")

    assert result.success
    assert page.fills[field] == "1234567890"
    assert page.clicks == [field, OPTION]
    assert page.key_presses == []


def test_autocomplete_without_suggestions_presses_enter():
    page = FakePage(url=TICKETS_URL)
    field = 'input[placeholder*="Type email" i]'
    page.add(field)

    result = fill_autocomplete(page, "To Recipients", "test@example.com")

    assert result.success
    assert page.key_presses == [(field, "Enter")]
    assert page.clock.now >= 3.0


# Ticket creation --------------------------------------------------------------

@pytest.fixture
def ticket_form():
    """Ticket form with every combobox already showing the default ticket's values."""
    ticket = TicketData()
    page = FakePage(url=TICKETS_URL)
    page.add('button:has-text("+ Ticket")', text="+ Ticket")
    page.add('[data-id="Create"]')
    page.add('input[placeholder*="Subject" i]')
    for label, value in (("Purpose", ticket.purpose), ("Assign To", ticket.assign_to), ("Source", ticket.source),
                         ("Status", ticket.status), ("Priority", ticket.priority)):
        page.add(_labelled_combobox(label), text=value)
    page.add('[contenteditable="true"]')
    page.add('button:has-text("Contact Info")', text="Contact Info")
    page.add('input[placeholder*="Contact name" i]')
    page.add('input[placeholder*="Search by name or phone" i]')
    page.add('input[placeholder*="Type email" i]')
    page.submit = page.add('button[type="submit"]:has-text("Create")', text="Create")
    return page


def _create(page, timeout_ms=10000):
    return create_ticket(page, TicketData(), timeout_ms=timeout_ms, clock=page.clock)


def test_create_ticket_succeeds_on_created_toast(ticket_form):
    ticket_form.submit.on_click = lambda: ticket_form.add(
        TOAST, text="Ticket created successfully", visible_from=ticket_form.clock.now + 1.0)

    result = _create(ticket_form)

    assert result.success
    assert result.notification.text == "Ticket created successfully"
    assert ticket_form.fills['input[placeholder*="Subject" i]'] == TicketData().subject
    assert ticket_form.fills['[contenteditable="true"]'].endswith("\n\n---\nTest Signature")
    assert ticket_form.fills['input[placeholder*="Contact name" i]'] == "Test Contact"


def test_create_ticket_reports_error_toast(ticket_form):
    ticket_form.submit.on_click = lambda: ticket_form.add(
        '[role="alert"]', text="Failed to create ticket: duplicate reference number")

    result = _create(ticket_form)

    assert result.failure_reason is FailureReason.ERROR_NOTIFICATION
    assert "duplicate reference" in result.message
    assert result.current_url == TICKETS_URL


def test_create_ticket_reports_field_errors(ticket_form):
    ticket_form.submit.on_click = lambda: ticket_form.add('.text-red-600, .text-red-500', text="Subject is required")

    result = _create(ticket_form)

    assert result.failure_reason is FailureReason.ERROR_NOTIFICATION
    assert result.value == ["Subject is required"]


def test_create_ticket_without_outcome_raises_with_url(ticket_form):
    with pytest.raises(ActionTimeoutError) as exc_info:
        _create(ticket_form, timeout_ms=3000)

    assert exc_info.value.current_url == TICKETS_URL


def test_create_ticket_stops_when_form_does_not_open():
    page = FakePage(url=TICKETS_URL)

    result = create_ticket(page, TicketData(), clock=page.clock)

    assert result.failure_reason is FailureReason.SELECTOR_NOT_FOUND
    assert page.fills == {}


# Timesheet --------------------------------------------------------------------

def test_existing_timesheet_is_reused():
    page = FakePage()
    page.add(TIMESHEET_READY)
    page.add('button:has-text("Add Activity")', text="Add Activity")

    result = ensure_timesheet_exists(page, base_url=BASE, retry_config=RetryConfig())

    assert result.success
    assert result.value == "existing"
    assert page.clicks == []


def test_missing_timesheet_is_created():
    page = FakePage()
    page.add(TIMESHEET_READY)

    def open_create_dialog():
        page.add('[data-id="Timesheet Single Mode"]')
        page.add('[data-id="Timesheet Create Submit"]', on_click=lambda: page.add(
            'button:has-text("Add Activity"), button:has-text("+ Activity")'))
    page.add('button:has-text("Create Timesheet")', on_click=open_create_dialog)

    result = ensure_timesheet_exists(page, base_url=BASE, retry_config=RetryConfig())

    assert result.success
    assert result.value == "created"
    assert page.clicks == [
        'button:has-text("Create Timesheet")',
        '[data-id="Timesheet Single Mode"]',
        '[data-id="Timesheet Create Submit"]',
    ]
    assert result.current_url == TIMESHEET_URL
