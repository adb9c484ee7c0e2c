"""Tests for follow-up rendering and personalization."""

from datetime import datetime

import pytest

from reminders.templates import (
    ReminderTemplateRenderer,
    extract_tags,
    normalize_tag_name,
    render_template,
    to_html,
)


@pytest.mark.unit
class TestRenderTemplate:

    def test_tag_names_are_normalized(self):
        assert normalize_tag_name("First Name") == "first_name"
        assert normalize_tag_name(" first-name ") == "first_name"
        assert normalize_tag_name("FIRST_NAME") == "first_name"

    def test_fills_tags(self):
        result = render_template("Hi {{First Name}} <{{email}}>", {"First Name": "Ada", "Email": "a@x.io"})
        assert result.rendered == "Hi Ada <a@x.io>"
        assert result.used_tags == ["first_name", "email"]
        assert result.missing_tags == []

    def test_missing_tag_is_marked(self):
        result = render_template("Account: {{Account Number}}", {})
        assert result.rendered == "Account: [MISSING: Account Number]"
        assert result.missing_tags == ["account_number"]

    def test_missing_first_name_greeting(self):
        result = render_template("Dear {{First Name}},\nThanks", {"First Name": "  "})
        assert result.rendered == "Hello,\nThanks"

    def test_extract_tags(self):
        assert extract_tags("{{ A }} and {{B}} and {{}}") == ["A", "B"]


@pytest.mark.unit
def test_to_html_escapes_and_breaks_lines():
    assert to_html("a < b\nc") == (
        '<div style="font-family: sans-serif; line-height: 1.6;">a &lt; b<br>c</div>'
    )


@pytest.mark.unit
class TestReminderTemplateRenderer:

    async def test_intermediate_reminder(self):
        rendered = await ReminderTemplateRenderer().render_follow_up(
            sequence_number=1,
            max_count=3,
            original_subject="Re: RE: Q3 statements",
            original_body="Please upload the statements.\n",
            deadline=None,
        )
        assert rendered.subject == "Reminder: Q3 statements"
        assert rendered.body.splitlines() == [
            "Dear {{First Name}},",
            "",
            "This is a friendly reminder (1 of 3) about the request below.",
            "",
            "Thank you.",
            "",
            "--- Original message ---",
            "Please upload the statements.",
        ]

    async def test_final_reminder_with_deadline(self):
        rendered = await ReminderTemplateRenderer().render_follow_up(
            sequence_number=3,
            max_count=3,
            original_subject="",
            original_body="Body",
            deadline=datetime(2026, 11, 2),
        )
        assert rendered.subject == "Reminder"
        assert "This is a final reminder about the request below." in rendered.body
        assert "Please respond by Monday, November 02, 2026." in rendered.body
