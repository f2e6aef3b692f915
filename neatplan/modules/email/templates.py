"""HTML bodies and default subjects for notification e-mails."""

from __future__ import annotations

from typing import Any

from jinja2 import Environment

from neatplan.modules.email.models import NotificationType

_env = Environment(autoescape=True)

_WRAPPER = """\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2 style="color: {{ accent }};">{{ heading }}</h2>
  <p>Hello {{ user_name or "there" }},</p>
  {body}
  <p>Best regards,<br>NeatPlan Team</p>
</div>
"""

_BODIES: dict[NotificationType, tuple[str, str, str, str]] = {
    NotificationType.TASK_REMINDER: (
        "Task Reminder - NeatPlan",
        "Task Reminder",
        "#0D9488",
        """<p>You have an upcoming cleaning task:</p>
  <div style="background: #f0f9ff; padding: 16px; border-radius: 8px; margin: 16px 0;">
    <h3 style="margin: 0 0 8px 0; color: #0369a1;">{{ task_name }}</h3>
    <p style="margin: 0; color: #64748b;">Room: {{ room_name }}</p>
    <p style="margin: 0; color: #64748b;">Due: {{ due_date }}</p>
  </div>
  <p>Please complete this task on time.</p>""",
    ),
    NotificationType.SCHEDULE_UPDATE: (
        "Schedule Update - NeatPlan",
        "Schedule Update",
        "#0D9488",
        """<p>Your cleaning schedule has been updated:</p>
  <div style="background: #f0f9ff; padding: 16px; border-radius: 8px; margin: 16px 0;">
    <h3 style="margin: 0 0 8px 0; color: #0369a1;">{{ change_type }}</h3>
    <p style="margin: 0; color: #64748b;">{{ description }}</p>
    {% if new_date %}<p style="margin: 0; color: #64748b;">New Date: {{ new_date }}</p>{% endif %}
  </div>
  <p>Please check your dashboard for the latest schedule.</p>""",
    ),
    NotificationType.SYSTEM_ALERT: (
        "System Alert - NeatPlan",
        "System Alert",
        "#DC2626",
        """<div style="background: #fef2f2; padding: 16px; border-radius: 8px; margin: 16px 0; border-left: 4px solid #DC2626;">
    <h3 style="margin: 0 0 8px 0; color: #DC2626;">{{ alert_type }}</h3>
    <p style="margin: 0; color: #7f1d1d;">{{ message }}</p>
  </div>
  <p>Please take appropriate action if required.</p>""",
    ),
    NotificationType.COMPLETION_NOTICE: (
        "Task Completed - NeatPlan",
        "Task Completed",
        "#059669",
        """<p>Great work! A cleaning task has been completed:</p>
  <div style="background: #f0fdf4; padding: 16px; border-radius: 8px; margin: 16px 0;">
    <h3 style="margin: 0 0 8px 0; color: #059669;">{{ task_name }}</h3>
    <p style="margin: 0; color: #15803d;">Room: {{ room_name }}</p>
    <p style="margin: 0; color: #15803d;">Completed by: {{ completed_by }}</p>
    <p style="margin: 0; color: #15803d;">Completed at: {{ completed_at }}</p>
  </div>
  <p>Thank you for maintaining our cleaning standards!</p>""",
    ),
}

_TEMPLATES = {
    kind: (subject, _env.from_string(_WRAPPER.replace("{body}", body)), heading, accent)
    for kind, (subject, heading, accent, body) in _BODIES.items()
}


def default_subject(kind: NotificationType) -> str:
    return _TEMPLATES[NotificationType(kind)][0]


def render(kind: NotificationType, data: dict[str, Any]) -> str:
    """Render the HTML body for ``kind``; values are HTML-escaped, missing ones render empty."""
    _, template, heading, accent = _TEMPLATES[NotificationType(kind)]
    return template.render({**data, "heading": heading, "accent": accent})
