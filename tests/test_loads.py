import unittest

import pytest

from dispatch_app.core.errors import NotFoundError, ValidationError
from dispatch_app.services.loads import (
    DriverAvailability,
    LoadStatus,
    change_load_status,
    driver_availability,
    is_allowed_transition,
    parse_load_status,
)
from tests.conftest import add_driver, add_load


class TestStatusTransitions(unittest.TestCase):
    def test_forward_steps_allowed(self):
        self.assertTrue(is_allowed_transition(LoadStatus.SCHEDULED, LoadStatus.IN_TRANSIT))
        self.assertTrue(is_allowed_transition(LoadStatus.IN_TRANSIT, LoadStatus.DELIVERED))

    def test_same_status_allowed(self):
        self.assertTrue(is_allowed_transition(LoadStatus.DELIVERED, LoadStatus.DELIVERED))

    def test_backward_and_skipping_rejected(self):
        self.assertFalse(is_allowed_transition(LoadStatus.DELIVERED, LoadStatus.IN_TRANSIT))
        self.assertFalse(is_allowed_transition(LoadStatus.IN_TRANSIT, LoadStatus.SCHEDULED))
        self.assertFalse(is_allowed_transition(LoadStatus.SCHEDULED, LoadStatus.DELIVERED))

    def test_parse_rejects_unknown(self):
        with self.assertRaises(ValidationError):
            parse_load_status("Lost")
        self.assertEqual(parse_load_status(" In-Transit "), LoadStatus.IN_TRANSIT)


def test_change_load_status_moves_forward(db_session):
    load = add_load(db_session, status="Scheduled")

    change_load_status(db_session, load_id=load.id, new_status="In-Transit")

    db_session.expire_all()
    assert db_session.get(type(load), load.id).status == "In-Transit"


def test_change_load_status_rejects_backwards(db_session):
    load = add_load(db_session, status="Delivered")

    with pytest.raises(ValidationError, match="Cannot change load status from Delivered to Scheduled"):
        change_load_status(db_session, load_id=load.id, new_status="Scheduled")


def test_change_load_status_unknown_load(db_session):
    with pytest.raises(NotFoundError):
        change_load_status(db_session, load_id=404, new_status="Delivered")


def test_driver_availability(db_session):
    driver = add_driver(db_session)
    assert driver_availability(db_session, driver_id=driver.id) == DriverAvailability.AVAILABLE

    add_load(db_session, driver=driver, reference_id="DONE", status="Delivered")
    assert driver_availability(db_session, driver_id=driver.id) == DriverAvailability.AVAILABLE

    add_load(db_session, driver=driver, reference_id="NEXT", status="Scheduled")
    assert driver_availability(db_session, driver_id=driver.id) == DriverAvailability.ON_LOAD
