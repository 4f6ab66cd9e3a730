"""
Pytest configuration and shared fixtures for the pipeline engine tests.
"""
import os
import sys
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

# Add project root to path so dealflow can be imported without installing
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, project_root)

from dealflow.engine.collaborators import WriteError  # noqa: E402
from dealflow.engine import stages  # noqa: E402
from dealflow.engine.models import Opportunity  # noqa: E402

COMPANY_ID = "11111111-1111-1111-1111-111111111111"
NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class FakeWriter:
    """In-memory opportunity writer that records every command it receives."""

    def __init__(self, opportunities=None):
        self.opportunities = list(opportunities or [])
        self.calls = []
        self.fail_fetch = False
        self.fail_move = False
        self.fail_update = False
        self.fail_create = False
        self.next_id = "new-opp-1"

    async def fetch_opportunities(self, company_id):
        self.calls.append(("fetch_opportunities", company_id))
        if self.fail_fetch:
            raise WriteError("fetch failed")
        return [o for o in self.opportunities if o.company_id in (None, company_id)]

    async def move_stage(self, opportunity_id, stage, actor_id):
        self.calls.append(("move_stage", opportunity_id, stage, actor_id))
        if self.fail_move:
            raise WriteError("network down")
        self._apply(opportunity_id, stage=stage, win_probability=stages.win_probability(stage), stage_entered_at=NOW)

    async def update_fields(self, opportunity_id, fields):
        self.calls.append(("update_fields", opportunity_id, dict(fields)))
        if self.fail_update:
            raise WriteError("update rejected")
        self._apply(opportunity_id, **fields)

    async def create_opportunity(self, payload):
        self.calls.append(("create_opportunity", dict(payload)))
        if self.fail_create:
            raise WriteError("insert failed")
        self.opportunities.append(Opportunity.from_record(dict(payload, id=self.next_id)))
        return self.next_id

    def _apply(self, opportunity_id, **changes):
        self.opportunities = [
            replace(o, **changes) if o.id == opportunity_id else o for o in self.opportunities
        ]

    def commands(self, name):
        return [c for c in self.calls if c[0] == name]


class RecordingNotifier:
    def __init__(self):
        self.successes = []
        self.errors = []

    def success(self, title, description=None):
        self.successes.append((title, description))

    def error(self, title, description=None):
        self.errors.append((title, description))


def make_opp(opp_id, stage, **kwargs):
    kwargs.setdefault("title", f"Deal {opp_id}")
    kwargs.setdefault("company_id", COMPANY_ID)
    return Opportunity(id=opp_id, stage=stage, **kwargs)


@pytest.fixture
def sample_opportunities():
    return [
        make_opp("o1", "new_lead", contact_name="Jane Smith", estimated_value=1000.0, win_probability=10,
                 stage_entered_at=NOW - timedelta(days=2)),
        make_opp("o2", "contacted", contact_name="Bob Jones", estimated_value=2500.0, win_probability=25,
                 stage_entered_at=NOW - timedelta(days=9)),
        make_opp("o3", "quote_sent", title="Kitchen remodel", contact_name="Ann Lee", estimated_value=5000.0,
                 win_probability=60, stage_entered_at=NOW - timedelta(days=1)),
        make_opp("o4", "negotiating", contact_name="Carl Diaz", estimated_value=8000.0, win_probability=75),
        make_opp("o5", "won", contact_name="Dana Wu", estimated_value=3000.0, actual_value=3200.0,
                 win_probability=100),
        make_opp("o6", "lost", contact_name="Eve Park", estimated_value=4000.0, lost_reason="Price"),
        make_opp("o7", "new_lead", contact_name="Deleted Person", estimated_value=999.0,
                 deleted_at=NOW - timedelta(days=1)),
    ]


@pytest.fixture
def writer(sample_opportunities):
    return FakeWriter(sample_opportunities)


@pytest.fixture
def notifier():
    return RecordingNotifier()
