"""Follow-up content rendering.

Two layers:
- FollowUpRenderer builds the follow-up subject/body around the
  original message (sequence number, max count, deadline).
  FormReminderRenderer does the same for a pending form.
- render_template fills ``{{Tag Name}}`` personalization tags from the
  contact. Tag names match case-, space- and hyphen-insensitively.
"""

import html
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Mapping, Optional

_TAG_PATTERN = re.compile(r"\{\{([^}]+)\}\}")
_MISSING_FIRST_NAME_GREETING = re.compile(
    r"Dear\s+\[MISSING:\s*(?:first[\s_]+name|firstName)\]\s*,", re.IGNORECASE
)


@dataclass(frozen=True)
class RenderedFollowUp:
    subject: str
    body: str


@dataclass
class RenderResult:
    rendered: str
    missing_tags: list[str] = field(default_factory=list)
    used_tags: list[str] = field(default_factory=list)


def normalize_tag_name(name: str) -> str:
    """'First Name', 'first_name' and 'First-Name' all become 'first_name'."""
    name = re.sub(r"\s+", " ", name.strip().lower())
    return re.sub(r"[\s\-]", "_", name)


def extract_tags(template: str) -> list[str]:
    return [m.strip() for m in _TAG_PATTERN.findall(template) if m.strip()]


def render_template(template: str, data: Mapping[str, Optional[str]]) -> RenderResult:
    """Replace ``{{Tag}}`` placeholders with values from ``data``.

    Missing or blank values render as ``[MISSING: Tag]``, except that a
    ``Dear [MISSING: First Name],`` greeting collapses to ``Hello,``.
    """
    values = {
        normalize_tag_name(key): (str(value).strip() if value is not None else "")
        for key, value in data.items()
    }
    result = RenderResult(rendered=template)

    def substitute(match: re.Match) -> str:
        original = match.group(1).strip()
        if not original:
            return match.group(0)
        tag = normalize_tag_name(original)
        value = values.get(tag, "")
        if value:
            if tag not in result.used_tags:
                result.used_tags.append(tag)
            return value
        if tag not in result.missing_tags:
            result.missing_tags.append(tag)
        return f"[MISSING: {original}]"

    rendered = _TAG_PATTERN.sub(substitute, template)
    result.rendered = _MISSING_FIRST_NAME_GREETING.sub("Hello,", rendered)
    return result


def to_html(body: str) -> str:
    """Minimal HTML alternative for a plain-text body."""
    escaped = html.escape(body).replace("\n", "<br>")
    return f'<div style="font-family: sans-serif; line-height: 1.6;">{escaped}</div>'


class FollowUpRenderer(ABC):
    """Builds follow-up content from the message being chased."""

    @abstractmethod
    async def render_follow_up(
        self,
        sequence_number: int,
        max_count: int,
        original_subject: str,
        original_body: str,
        deadline: Optional[datetime],
    ) -> RenderedFollowUp:
        ...


class ReminderTemplateRenderer(FollowUpRenderer):
    """Plain-text follow-up quoting the original message.

    The body keeps a ``{{First Name}}`` tag; personalization runs after.
    """

    async def render_follow_up(
        self,
        sequence_number: int,
        max_count: int,
        original_subject: str,
        original_body: str,
        deadline: Optional[datetime],
    ) -> RenderedFollowUp:
        base_subject = re.sub(r"^(re:\s*)+", "", original_subject.strip(), flags=re.IGNORECASE)
        subject = f"Reminder: {base_subject}" if base_subject else "Reminder"

        if sequence_number >= max_count:
            opener = "This is a final reminder about the request below."
        else:
            opener = (
                f"This is a friendly reminder ({sequence_number} of {max_count}) "
                "about the request below."
            )

        lines = ["Dear {{First Name}},", "", opener]
        if deadline is not None:
            lines.append(f"Please respond by {deadline.strftime('%A, %B %d, %Y')}.")
        lines += ["", "Thank you.", "", "--- Original message ---", original_body.strip()]

        return RenderedFollowUp(subject=subject, body="\n".join(lines))


class FormReminderRenderer:
    """Reminder asking a contact to complete a pending form."""

    def render(
        self,
        form_name: str,
        reminder_number: int,
        max_count: int,
        task_name: Optional[str] = None,
        sender_name: Optional[str] = None,
        deadline: Optional[datetime] = None,
    ) -> RenderedFollowUp:
        subject = f"Reminder: please complete {form_name}"
        if reminder_number >= max_count:
            opener = f"This is a final reminder to complete the form \"{form_name}\"."
        else:
            opener = (
                f"This is a reminder ({reminder_number} of {max_count}) to complete "
                f"the form \"{form_name}\"."
            )

        lines = ["Dear {{First Name}},", "", opener]
        if task_name:
            lines.append(f"It is needed for: {task_name}.")
        if deadline is not None:
            lines.append(f"Please submit it by {deadline.strftime('%A, %B %d, %Y')}.")
        lines += ["", "Thank you."]
        if sender_name:
            lines.append(sender_name)

        return RenderedFollowUp(subject=subject, body="\n".join(lines))
