"""
Tests for the init-db and batch detection command-line entry points
"""
import json
import threading

import pytest

from eduguard.database.config import get_db_session
from eduguard.database.repositories import SchoolRepository, StudentRepository
from eduguard.notifications.dispatcher import BackgroundDispatcher
from eduguard.notifications.guardian import MessageTransport
from eduguard.scripts import init_db, run_detection


class GatedTransport(MessageTransport):
    """Each send waits for `gate`, then records its thread and whether the gate was open"""

    name = "gated"

    def __init__(self):
        self.gate = threading.Event()
        self.sent = []

    def send(self, message):
        released = self.gate.wait(timeout=2)
        self.sent.append((threading.current_thread().name, released))


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'eduguard.db'}"


def test_init_and_detect(database_url, capsys):
    assert init_db.main(["--database-url", database_url, "--school-name", "GS Nyamata"]) == 0
    with get_db_session() as session:
        school = SchoolRepository(session).get_all()[0]
        StudentRepository(session).create(school.id, "Eric", "Habimana", distance_to_school_km=8)
    capsys.readouterr()

    assert run_detection.main(["--database-url", database_url, "--actor-id", "nightly"]) == 0

    summary = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert summary["school_id"] == school.id
    assert summary["students_processed"] == 1
    assert summary["total_flags_created"] == 1


def test_guardian_alerts_are_delivered_off_the_detection_thread(database_url, monkeypatch):
    init_db.main(["--database-url", database_url, "--school-name", "GS Nyamata"])
    with get_db_session() as session:
        school = SchoolRepository(session).get_all()[0]
        for last_name in ("Habimana", "Niyonzima"):
            StudentRepository(session).create(
                school.id, "Eric", last_name, distance_to_school_km=8,
                guardian_contacts=[{"name": "Marie Uwimana", "phone": "+250788000002"}],
            )

    transport = GatedTransport()
    monkeypatch.setattr(run_detection, "create_transport_from_env", lambda: transport)

    # Deliveries stay parked until the run has finished every school
    original_shutdown = BackgroundDispatcher.shutdown

    def open_gate_then_shutdown(self, wait=True):
        transport.gate.set()
        original_shutdown(self, wait=wait)

    monkeypatch.setattr(BackgroundDispatcher, "shutdown", open_gate_then_shutdown)

    assert run_detection.main(["--database-url", database_url]) == 0

    # new CRITICAL flag plus the LOW -> CRITICAL level change, per student
    assert len(transport.sent) == 4
    assert all(released for _, released in transport.sent)
    assert all(name.startswith("eduguard-notify") for name, _ in transport.sent)


def test_unknown_school_fails_the_run(database_url):
    init_db.main(["--database-url", database_url])
    assert run_detection.main(["--database-url", database_url, "--school-id", "missing"]) == 1


def test_parser_defaults():
    args = run_detection.build_parser().parse_args([])
    assert args.school_ids is None
    assert args.actor_id == "system"
    assert args.legacy_rules is False
