import pytest

from supportdesk.config import TicketStatus
from supportdesk.core import InvalidStatusTransitionException
from supportdesk.support.domain import STATUS_TRANSITIONS, can_transition, validate_transition


ALLOWED = [
    (TicketStatus.OPEN, TicketStatus.IN_PROGRESS),
    (TicketStatus.OPEN, TicketStatus.CLOSED),
    (TicketStatus.IN_PROGRESS, TicketStatus.PENDING_USER),
    (TicketStatus.IN_PROGRESS, TicketStatus.RESOLVED),
    (TicketStatus.IN_PROGRESS, TicketStatus.ESCALATED),
    (TicketStatus.PENDING_USER, TicketStatus.IN_PROGRESS),
    (TicketStatus.PENDING_USER, TicketStatus.CLOSED),
    (TicketStatus.PENDING_VENDOR, TicketStatus.IN_PROGRESS),
    (TicketStatus.PENDING_VENDOR, TicketStatus.ESCALATED),
    (TicketStatus.ESCALATED, TicketStatus.IN_PROGRESS),
    (TicketStatus.ESCALATED, TicketStatus.RESOLVED),
    (TicketStatus.RESOLVED, TicketStatus.CLOSED),
    (TicketStatus.RESOLVED, TicketStatus.OPEN),
]


def test_table_covers_every_status():
    assert set(STATUS_TRANSITIONS) == set(TicketStatus)


@pytest.mark.parametrize("from_status,to_status", ALLOWED)
def test_allowed_moves(from_status, to_status):
    assert can_transition(from_status, to_status)
    validate_transition(from_status, to_status)


def test_everything_else_is_rejected():
    allowed = set(ALLOWED)
    for from_status in TicketStatus:
        for to_status in TicketStatus:
            if (from_status, to_status) not in allowed:
                assert not can_transition(from_status, to_status), (from_status, to_status)


def test_closed_is_terminal():
    for to_status in TicketStatus:
        with pytest.raises(InvalidStatusTransitionException):
            validate_transition(TicketStatus.CLOSED, to_status)


def test_plain_strings_are_accepted():
    assert can_transition("OPEN", "IN_PROGRESS")
    with pytest.raises(InvalidStatusTransitionException) as exc_info:
        validate_transition("OPEN", "RESOLVED")
    assert exc_info.value.from_status == TicketStatus.OPEN
    assert exc_info.value.to_status == TicketStatus.RESOLVED
