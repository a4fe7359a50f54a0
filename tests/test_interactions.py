"""Tests for the CTA interaction driver."""

import pytest

from tracking.beacons import BeaconObserver
from tracking.errors import InteractionFailure
from tracking.interactions import (
    CAPTCHA_SELECTOR,
    EMAIL_SELECTOR,
    FIELD_SELECTOR,
    FORM_SELECTOR,
    PHONE_SELECTOR,
    PROVIDER_IFRAME_SELECTOR,
    TEST_EMAIL,
    TEST_MESSAGE,
    TEST_NAME,
    TEST_PHONE,
    InteractionDriver,
    fill_form,
    find_submit,
    robust_click,
)
from tracking.models import CtaTests, OutcomeStatus
from conftest import GA4_COLLECT, GA4_COLLECT_NO_EVENT, FakeElement, FakeLocator

SUBMIT = 'button[type="submit"]'


@pytest.fixture
def driver(page, clock):
    observer = BeaconObserver(clock)
    observer.attach(page)
    return InteractionDriver(page, observer.log, clock, link_observation_ms=3500, form_observation_ms=5000)


def phone_link(page, number="+15551234567", en="click_call", delay=500, **kwargs):
    def fire():
        page.schedule(delay, GA4_COLLECT.format(en=en))

    return FakeElement(
        attrs={"href": f"tel:{number}"},
        text=" Call us ",
        on_click=fire if en is not None else None,
        **kwargs,
    )


def contact_form(page, fields=None, children=None, info=None, on_submit=None):
    submit = FakeElement(on_click=on_submit)
    kids = {
        FIELD_SELECTOR: fields if fields is not None else [
            FakeElement(info={"tag": "input", "type": "email", "hint": "email", "required": True}),
            FakeElement(info={"tag": "textarea", "type": "", "hint": "message", "required": False}),
        ],
        SUBMIT: [submit],
    }
    kids.update(children or {})
    form = FakeElement(info=info or {"standalone": True, "fields": 2, "kind": "form"}, children=kids)
    return form, submit


@pytest.mark.asyncio
async def test_tracked_phone_click(page, driver):
    page.add(PHONE_SELECTOR, phone_link(page))
    result = await driver.test_phone_links(3)

    assert (result.found, result.tested, result.working) == (1, 1, 1)
    window = result.interactions[0]
    assert window.target == "tel:+15551234567"
    assert window.details["text"] == "Call us"
    assert window.outcome.status == OutcomeStatus.TRACKED
    assert window.outcome.event_names == ["click_call"]
    assert window.end_ms - window.start_ms == pytest.approx(3650)
    assert result.events[0].relevant_events == ["click_call"]


@pytest.mark.asyncio
async def test_untracked_phone_click(page, driver):
    page.add(PHONE_SELECTOR, phone_link(page, en=None))
    result = await driver.test_phone_links(3)
    assert (result.found, result.tested, result.working) == (1, 1, 0)
    assert result.failures[0].status == OutcomeStatus.UNTRACKED


@pytest.mark.asyncio
async def test_beacon_after_window_is_not_attributed(page, driver):
    page.add(PHONE_SELECTOR, phone_link(page, delay=4000))
    result = await driver.test_phone_links(1)
    assert result.interactions[0].outcome.status == OutcomeStatus.UNTRACKED


@pytest.mark.asyncio
async def test_collect_without_event_name(page, driver):
    link = FakeElement(
        attrs={"href": "mailto:info@example.com"},
        on_click=lambda: page.schedule(200, GA4_COLLECT_NO_EVENT),
    )
    page.add(EMAIL_SELECTOR, link)
    result = await driver.test_email_links(3)
    assert result.tested == 1
    assert result.working == 0
    assert result.interactions[0].outcome.status == OutcomeStatus.TRACKED_NO_EVENT_NAME


@pytest.mark.asyncio
async def test_link_cap(page, driver):
    links = [phone_link(page, number=f"+1555000000{i}") for i in range(5)]
    page.add(PHONE_SELECTOR, *links)
    result = await driver.test_phone_links(3)
    assert result.found == 5
    assert len(result.interactions) == 3
    assert [link.clicks for link in links] == [1, 1, 1, 0, 0]


@pytest.mark.asyncio
async def test_zero_cap_tests_nothing(page, driver):
    page.add(PHONE_SELECTOR, phone_link(page))
    result = await driver.test_phone_links(0)
    assert result.found == 1
    assert result.tested == 0
    assert result.interactions == []


@pytest.mark.asyncio
async def test_hidden_link_is_click_failed_and_run_continues(page, driver):
    hidden = phone_link(page, number="+15550000001", visible=False)
    visible = phone_link(page, number="+15550000002")
    page.add(PHONE_SELECTOR, hidden, visible)

    result = await driver.test_phone_links(3)
    assert [w.outcome.status for w in result.interactions] == [
        OutcomeStatus.CLICK_FAILED,
        OutcomeStatus.TRACKED,
    ]
    assert result.interactions[0].outcome.reason == "Not visible"
    assert (result.tested, result.working) == (1, 1)


@pytest.mark.asyncio
async def test_click_failed_windows_are_never_correlated(page, driver):
    """A beacon that lands while a failed element is handled is not credited to it."""
    page.emit(GA4_COLLECT.format(en="page_view"))
    page.add(PHONE_SELECTOR, phone_link(page, scroll_error=True))
    result = await driver.test_phone_links(1)
    outcome = result.interactions[0].outcome
    assert outcome.status == OutcomeStatus.CLICK_FAILED
    assert outcome.event_names == []


@pytest.mark.asyncio
async def test_dispatch_fallback_when_native_click_fails(page):
    link = phone_link(page, click_error=True)
    await robust_click(page, FakeLocator([link]))
    assert link.clicks == 0
    assert link.dispatched == 1


@pytest.mark.asyncio
async def test_robust_click_raises_for_hidden_element(page):
    with pytest.raises(InteractionFailure, match="Not visible"):
        await robust_click(page, FakeLocator([FakeElement(visible=False)]))


@pytest.mark.asyncio
async def test_click_and_dispatch_both_failing(page, driver):
    page.add(PHONE_SELECTOR, phone_link(page, click_error=True, dispatch_error=True))
    result = await driver.test_phone_links(1)
    assert result.tested == 0
    assert result.failures[0].status == OutcomeStatus.CLICK_FAILED


@pytest.mark.asyncio
async def test_fill_form_values():
    email = FakeElement(info={"tag": "input", "type": "email", "hint": "email"})
    phone = FakeElement(info={"tag": "input", "type": "tel", "hint": "phone"})
    name = FakeElement(info={"tag": "input", "type": "text", "hint": "full_name"})
    message = FakeElement(info={"tag": "textarea", "type": "", "hint": "message"})
    select = FakeElement(info={"tag": "select", "type": "", "hint": "topic"})
    required_box = FakeElement(info={"tag": "input", "type": "checkbox", "hint": "terms", "required": True})
    optional_box = FakeElement(info={"tag": "input", "type": "checkbox", "hint": "newsletter"})
    password = FakeElement(info={"tag": "input", "type": "password", "hint": "password"})
    date = FakeElement(info={"tag": "input", "type": "date", "hint": "when"})
    form = FakeLocator([FakeElement(children={
        FIELD_SELECTOR: [email, phone, name, message, select, required_box, optional_box, password, date],
    })])

    filled = await fill_form(form)
    assert filled == 6
    assert email.value == TEST_EMAIL
    assert phone.value == TEST_PHONE
    assert name.value == TEST_NAME
    assert message.value == TEST_MESSAGE
    assert select.selected_index == 1
    assert required_box.checked
    assert not optional_box.checked
    assert password.value is None
    assert date.value is None


@pytest.mark.asyncio
async def test_form_submit_tracked(page, driver):
    form, submit = contact_form(
        page, on_submit=lambda: page.schedule(1000, GA4_COLLECT.format(en="generate_lead"))
    )
    page.add(FORM_SELECTOR, form)

    result = await driver.test_forms(2)
    assert (result.found, result.tested, result.working) == (1, 1, 1)
    window = result.interactions[0]
    assert window.target == "form #1 (form)"
    assert window.details["filled_fields"] == 2
    assert window.details["submit_clicked"]
    assert window.details["submit_selector"] == SUBMIT
    assert submit.clicks == 1
    assert result.events[0].relevant_events == ["generate_lead"]


@pytest.mark.asyncio
async def test_form_with_validation_errors_is_not_submitted(page, driver):
    form, submit = contact_form(page, children={'[aria-invalid="true"]': [FakeElement()]})
    page.add(FORM_SELECTOR, form)

    result = await driver.test_forms(2)
    window = result.interactions[0]
    assert submit.clicks == 0
    assert "validation_errors_present" in window.details["notes"]
    assert not window.details["submit_clicked"]
    assert window.outcome.status == OutcomeStatus.UNTRACKED


@pytest.mark.asyncio
async def test_form_without_submit_control(page, driver):
    form, _ = contact_form(page, children={SUBMIT: []})
    page.add(FORM_SELECTOR, form)

    result = await driver.test_forms(2)
    assert result.interactions[0].details["notes"] == ["no_submit_control"]


@pytest.mark.asyncio
async def test_nested_and_empty_forms_are_skipped(page, driver):
    nested, _ = contact_form(page, info={"standalone": False, "fields": 2, "kind": "cf7"})
    empty, _ = contact_form(page, info={"standalone": True, "fields": 0, "kind": "form"})
    page.add(FORM_SELECTOR, nested, empty)

    result = await driver.test_forms(2)
    assert result.found == 0
    assert result.interactions == []


@pytest.mark.asyncio
async def test_form_cap_and_captcha_note(page, driver):
    forms = [contact_form(page)[0] for _ in range(3)]
    page.add(FORM_SELECTOR, *forms)
    page.add(CAPTCHA_SELECTOR, FakeElement())

    result = await driver.test_forms(2)
    assert result.found == 3
    assert len(result.interactions) == 2
    assert all("captcha_detected" in w.details["notes"] for w in result.interactions)


@pytest.mark.asyncio
async def test_embedded_form_iframes_are_counted(page, driver):
    page.add(PROVIDER_IFRAME_SELECTOR, FakeElement(), FakeElement(visible=False))
    result = await driver.test_forms(2)
    assert result.found == 0
    assert result.embedded_forms == 1


@pytest.mark.asyncio
async def test_run_covers_every_category(page, driver):
    page.add(PHONE_SELECTOR, phone_link(page))
    page.add(EMAIL_SELECTOR, FakeElement(attrs={"href": "mailto:a@example.com"}))
    form, _ = contact_form(page)
    page.add(FORM_SELECTOR, form)

    cta = await driver.run(max_phone=3, max_email=3, max_forms=2)
    assert cta.phone.working == 1
    assert cta.email.tested == 1
    assert cta.email.working == 0
    assert cta.forms.tested == 1


@pytest.mark.asyncio
async def test_results_are_published_as_each_window_closes(page, clock):
    """A shared CtaTests holds finished clicks while later ones are still running."""
    observer = BeaconObserver(clock)
    observer.attach(page)
    results = CtaTests()
    driver = InteractionDriver(page, observer.log, clock, results=results)
    seen = []

    def second_click():
        seen.append((results.phone.found, results.phone.tested, results.phone.working))

    page.add(PHONE_SELECTOR, phone_link(page), FakeElement(attrs={"href": "tel:+15559999999"}, on_click=second_click))

    returned = await driver.run(max_phone=3, max_email=3, max_forms=2)

    assert returned is results
    assert seen == [(2, 1, 1)]
    assert (results.phone.found, results.phone.tested, results.phone.working) == (2, 2, 1)


@pytest.mark.asyncio
async def test_second_run_adds_to_the_totals(page, driver):
    page.add(PHONE_SELECTOR, phone_link(page))
    await driver.run()

    page.url = "https://example.com/contact"
    page.locators = {PHONE_SELECTOR: [phone_link(page, number="+15550000001", en=None)]}
    cta = await driver.run()

    assert (cta.phone.found, cta.phone.tested, cta.phone.working) == (2, 2, 1)
    assert [w.details["page"] for w in cta.phone.interactions] == [
        "https://example.com/",
        "https://example.com/contact",
    ]


@pytest.mark.asyncio
async def test_hidden_submit_does_not_hide_visible_one():
    hidden, visible = FakeElement(visible=False), FakeElement()
    form = FakeLocator([FakeElement(children={SUBMIT: [hidden, visible]})])

    loc, selector = await find_submit(form)
    await loc.click()

    assert selector == SUBMIT
    assert (hidden.clicks, visible.clicks) == (0, 1)
