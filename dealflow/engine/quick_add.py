from __future__ import annotations

from typing import Optional

from . import stages
from .models import CreateRequest, parse_amount


def default_title(contact_name: str) -> str:
    return f"{contact_name} - Lead"


def compose_quick_add(
    contact_name: Optional[str],
    title_input: Optional[str],
    estimated_value_input: Optional[str],
    company_id: str,
    source: Optional[str] = None,
) -> Optional[CreateRequest]:
    """Minimal new-lead payload, or None when the contact name is blank."""
    name = (contact_name or "").strip()
    if not name:
        return None

    title = (title_input or "").strip() or default_title(name)
    return CreateRequest(
        company_id=company_id,
        title=title,
        contact_name=name,
        stage=stages.list_active_stages()[0],
        estimated_value=parse_amount(estimated_value_input),
        source=source if source in stages.OPPORTUNITY_SOURCES else None,
    )


class QuickAddComposer:
    """
    Inline quick-add form state.

    The title follows the contact name ("Jane - Lead") until the operator edits
    the title by hand; from then on it is left alone until the form is reopened.
    """

    def __init__(self, company_id: str) -> None:
        self.company_id = company_id
        self.open()

    def open(self) -> None:
        self.contact_name = ""
        self.title = ""
        self.estimated_value = ""
        self.title_manually_edited = False

    def set_contact_name(self, value: str) -> None:
        self.contact_name = value
        if not self.title_manually_edited:
            self.title = default_title(value) if value else ""

    def set_title(self, value: str) -> None:
        self.title = value
        self.title_manually_edited = True

    def set_estimated_value(self, value: str) -> None:
        self.estimated_value = value

    def can_submit(self) -> bool:
        return bool(self.contact_name.strip())

    def compose(self) -> Optional[CreateRequest]:
        return compose_quick_add(self.contact_name, self.title, self.estimated_value, self.company_id)
