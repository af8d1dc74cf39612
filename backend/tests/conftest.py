"""
Pytest fixtures for the trade-in custody backend tests.

Each test gets a fresh file-backed SQLite database under tmp_path. A file
(not :memory:) is used because the sequence allocator opens its own
connections and the concurrency tests run worker threads; all of them must
see the same data.
"""

import pytest

from tradein import create_app
from tradein.extensions import db
from tradein.services import custody_service


DEVICE_PHOTOS = ["photo://front.jpg", "photo://back.jpg", "photo://side.jpg"]
ID_PROOF_PHOTOS = ["photo://aadhaar.jpg"]


@pytest.fixture(scope='function')
def app(tmp_path):
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'tradein-test.db'}",
        'SQLALCHEMY_ENGINE_OPTIONS': {
            'connect_args': {'check_same_thread': False, 'timeout': 30},
        },
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    yield db.session
    db.session.rollback()


@pytest.fixture(scope='function')
def make_pickup(db_session):
    """Factory: committed pickup request in 'pending'."""
    def _make(**overrides):
        fields = {
            'product_name': "Canon EOS 200D",
            'category': "cameras",
            'brand': "Canon",
            'postal_code': "641001",
            'price': 25000,
            'customer_name': "Priya",
            'customer_phone': "9876543210",
            'customer_address': "12 Race Course Road",
        }
        fields.update(overrides)
        intake = custody_service.create_pickup_request(**fields)
        db_session.commit()
        return intake
    return _make


@pytest.fixture(scope='function')
def make_assigned_pickup(db_session, make_pickup):
    def _make(agent_id="agent-7", **overrides):
        intake = make_pickup(**overrides)
        custody_service.assign_agent(intake.id, agent_id=agent_id, agent_name="Ravi")
        db_session.commit()
        return intake
    return _make


@pytest.fixture(scope='function')
def make_verified_pickup(db_session, make_assigned_pickup):
    """Factory: pickup in 'picked_up' with its verification."""
    def _make(serial_number="SN-0001", **overrides):
        intake = make_assigned_pickup(**overrides)
        custody_service.submit_pickup_verification(
            intake.id,
            performed_by="agent-7",
            device_photos=list(DEVICE_PHOTOS),
            id_proof_photos=list(ID_PROOF_PHOTOS),
            serial_number=serial_number,
        )
        db_session.commit()
        return intake
    return _make


@pytest.fixture(scope='function')
def make_walk_in(db_session):
    """Factory: committed walk-in in 'pending_qc'."""
    def _make(**overrides):
        fields = {
            'showroom_id': "SR-CBE-01",
            'staff_id': "staff-3",
            'customer_name': "Arun",
            'customer_phone': "9123456780",
            'product_name': "iPhone 12",
            'category': "phones",
            'brand': "Apple",
            'manual_price': 30000,
            'device_photos': list(DEVICE_PHOTOS),
            'id_proof_photos': list(ID_PROOF_PHOTOS),
            'serial_number': "IMEI-1234",
            'postal_code': "560001",
        }
        fields.update(overrides)
        intake, _ = custody_service.create_walk_in(**fields)
        db_session.commit()
        return intake
    return _make


@pytest.fixture(scope='function')
def make_stocked_item(db_session, make_verified_pickup):
    """Factory: verified pickup routed by QC; returns the InventoryItem."""
    counter = {'n': 0}

    def _make(decision="warehouse", target_showroom_id=None):
        counter['n'] += 1
        intake = make_verified_pickup(serial_number=f"SN-{counter['n']:04d}")
        _, item = custody_service.record_qc_decision(
            intake.id,
            decision=decision,
            reviewer_id="qc-1",
            reviewer_name="Meena",
            target_showroom_id=target_showroom_id,
        )
        db_session.commit()
        return item
    return _make
