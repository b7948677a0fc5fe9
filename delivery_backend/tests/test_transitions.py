"""
Delivery status graph tests.
"""

import itertools

import pytest

from delivery_backend.app.domain.delivery.transitions import (
    VALID_TRANSITIONS,
    is_terminal,
    is_valid_transition,
)
from delivery_backend.app.models.delivery_enums import DeliveryStatus as S, TERMINAL_STATUSES

ALLOWED = {
    (S.REQUESTED, S.ACCEPTED),
    (S.REQUESTED, S.CANCELLED),
    (S.ACCEPTED, S.PICKING_UP),
    (S.ACCEPTED, S.PICKED_UP),
    (S.ACCEPTED, S.CANCELLED),
    (S.PICKING_UP, S.PICKED_UP),
    (S.PICKING_UP, S.CANCELLED),
    (S.PICKED_UP, S.IN_TRANSIT),
    (S.IN_TRANSIT, S.ARRIVED),
    (S.IN_TRANSIT, S.DELIVERED),
    (S.IN_TRANSIT, S.RETURNED),
    (S.ARRIVED, S.DELIVERED),
    (S.ARRIVED, S.RETURNED),
    (S.ARRIVED, S.FAILED),
}


@pytest.mark.parametrize("current,target", list(itertools.product(S, S)))
def test_transition_table(current, target):
    assert is_valid_transition(current, target) == ((current, target) in ALLOWED)


def test_every_status_has_an_entry():
    assert set(VALID_TRANSITIONS) == set(S)


@pytest.mark.parametrize("status", TERMINAL_STATUSES)
def test_terminal_statuses_have_no_exits(status):
    assert is_terminal(status)
    assert not VALID_TRANSITIONS[status]


def test_arrived_cannot_retreat_to_in_transit():
    assert not is_valid_transition(S.ARRIVED, S.IN_TRANSIT)


def test_picked_up_cannot_be_cancelled():
    assert not is_valid_transition(S.PICKED_UP, S.CANCELLED)
