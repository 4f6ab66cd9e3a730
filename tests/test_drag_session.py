from dealflow.engine.drag import DragSessionController

from conftest import make_opp

OPPS = [
    make_opp("o1", "new_lead"),
    make_opp("o2", "quote_sent"),
    make_opp("o3", "won"),
]


def test_drop_on_other_stage_produces_request():
    drag = DragSessionController()
    drag.start_drag("o1")
    assert drag.is_dragging

    req = drag.complete_drag("contacted", OPPS)
    assert req.opportunity_id == "o1"
    assert req.from_stage == "new_lead"
    assert req.to_stage == "contacted"
    assert not drag.is_dragging


def test_drop_while_idle_is_ignored():
    assert DragSessionController().complete_drag("contacted", OPPS) is None


def test_drop_on_same_stage_is_discarded():
    drag = DragSessionController()
    drag.start_drag("o1")
    assert drag.complete_drag("new_lead", OPPS) is None
    assert drag.active_opportunity_id is None


def test_drop_on_unknown_target_is_discarded():
    drag = DragSessionController()
    drag.start_drag("o1")
    assert drag.complete_drag("column-7", OPPS) is None
    assert drag.complete_drag(None, OPPS) is None


def test_drop_of_vanished_card_is_discarded():
    drag = DragSessionController()
    drag.start_drag("gone")
    assert drag.complete_drag("contacted", OPPS) is None
    assert not drag.is_dragging


def test_closed_card_cannot_be_dragged_out():
    drag = DragSessionController()
    drag.start_drag("o3")
    assert drag.complete_drag("negotiating", OPPS) is None


def test_second_start_replaces_tracked_card():
    drag = DragSessionController()
    drag.start_drag("o1")
    drag.start_drag("o2")
    req = drag.complete_drag("negotiating", OPPS)
    assert req.opportunity_id == "o2"


def test_cancel_resets_to_idle():
    drag = DragSessionController()
    drag.start_drag("o1")
    drag.cancel_drag()
    assert drag.complete_drag("contacted", OPPS) is None
