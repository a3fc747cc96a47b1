"""
Tests unitaires pour le service des sessions de présence.
Couverture : create_session, get_owned_session, close_session, close_expired_sessions, QR code, export CSV.
"""

import uuid
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError

from unitrack.auth import CurrentUser
from unitrack.models.attendance import AttendanceRecord
from unitrack.models.attendance_session import AttendanceSession
from unitrack.models.group import ClassAttendanceSettings, Group
from unitrack.schemas.attendance import SessionCreate
from unitrack.services.errors import (
    NotGroupOwner,
    NotSessionOwner,
    SessionClosed,
    SessionCloseConflict,
    SessionNotFound,
)
from unitrack.services.session_service import (
    close_expired_sessions,
    close_session,
    create_session,
    export_session_records_csv,
    generate_qr_token,
    get_owned_session,
    get_session_qr_png,
    get_session_records,
)
from unitrack.services.token_resolver import resolve_token

NOW = datetime(2026, 3, 2, 9, 0)
FACULTY = CurrentUser(id=uuid.uuid4(), role="faculty")
ADMIN = CurrentUser(id=uuid.uuid4(), role="admin")


# ----------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------

def make_group(faculty_id=None):
    g = MagicMock(spec=Group)
    g.id = uuid.uuid4()
    g.faculty_id = faculty_id or FACULTY.id
    return g


def make_session(status="active", faculty_id=None):
    s = MagicMock(spec=AttendanceSession)
    s.id = uuid.uuid4()
    s.group_id = uuid.uuid4()
    s.faculty_id = faculty_id or FACULTY.id
    s.qr_token = "abc123"
    s.status = status
    s.expires_at = NOW - timedelta(hours=2)
    return s


def scalars_result(values):
    r = MagicMock()
    r.scalars.return_value.all.return_value = values
    return r


def session_create(**kwargs):
    data = {
        "group_id": uuid.uuid4(),
        "session_name": "Algorithmique - CM 4",
        "faculty_latitude": 12.9716,
        "faculty_longitude": 77.5946,
    }
    data.update(kwargs)
    return SessionCreate(**data)


# ----------------------------------------------------------------
# create_session
# ----------------------------------------------------------------

def make_db(group=None, group_settings=None):
    """db.get renvoie le groupe ou ses réglages selon le modèle demandé."""
    db = MagicMock()
    db.get.side_effect = lambda model, key: {
        Group: group,
        ClassAttendanceSettings: group_settings,
    }.get(model)
    return db


class TestCreateSession:
    def test_session_creee_avec_jeton_et_expiration(self):
        db = make_db(make_group())

        resp = create_session(db, session_create(qr_duration_minutes=10), FACULTY, now=NOW)

        assert resp.status == "active"
        assert resp.expires_at == NOW + timedelta(minutes=10)
        assert len(resp.qr_token) == 64
        assert resolve_token(resp.scan_url) == resp.qr_token
        db.add.assert_called_once()
        db.commit.assert_called_once()

    def test_valeurs_par_defaut(self):
        db = make_db(make_group())

        resp = create_session(db, session_create(), FACULTY, now=NOW)

        assert resp.allowed_radius_meters == 20.0
        assert resp.expires_at == NOW + timedelta(minutes=5)
        assert resp.session_type == "lecture"

    def test_reglages_du_groupe_avant_configuration_globale(self):
        group_settings = ClassAttendanceSettings(
            default_qr_duration_minutes=15,
            default_allowed_radius_meters=50.0,
        )
        db = make_db(make_group(), group_settings)

        resp = create_session(db, session_create(), FACULTY, now=NOW)

        assert resp.allowed_radius_meters == 50.0
        assert resp.expires_at == NOW + timedelta(minutes=15)

    def test_requete_prioritaire_sur_reglages_du_groupe(self):
        group_settings = ClassAttendanceSettings(
            default_qr_duration_minutes=15,
            default_allowed_radius_meters=50.0,
        )
        db = make_db(make_group(), group_settings)

        resp = create_session(
            db, session_create(qr_duration_minutes=3, allowed_radius_meters=10.0), FACULTY, now=NOW
        )

        assert resp.allowed_radius_meters == 10.0
        assert resp.expires_at == NOW + timedelta(minutes=3)

    def test_reglages_du_groupe_vides(self):
        db = make_db(make_group(), ClassAttendanceSettings())

        resp = create_session(db, session_create(), FACULTY, now=NOW)

        assert resp.allowed_radius_meters == 20.0
        assert resp.expires_at == NOW + timedelta(minutes=5)

    def test_groupe_introuvable(self):
        db = make_db(None)

        with pytest.raises(ValueError, match="introuvable"):
            create_session(db, session_create(), FACULTY)
        db.add.assert_not_called()

    def test_enseignant_non_responsable(self):
        db = make_db(make_group(faculty_id=uuid.uuid4()))

        with pytest.raises(NotGroupOwner):
            create_session(db, session_create(), FACULTY)
        db.add.assert_not_called()

    def test_admin_non_restreint(self):
        db = make_db(make_group(faculty_id=uuid.uuid4()))

        resp = create_session(db, session_create(), ADMIN, now=NOW)
        assert resp.faculty_id == ADMIN.id

    def test_type_de_session_invalide(self):
        with pytest.raises(ValueError):
            session_create(session_type="party")


def test_jetons_uniques():
    assert len({generate_qr_token() for _ in range(50)}) == 50


# ----------------------------------------------------------------
# get_owned_session
# ----------------------------------------------------------------

class TestGetOwnedSession:
    def test_responsable(self):
        session = make_session()
        db = MagicMock()
        db.get.return_value = session
        assert get_owned_session(db, session.id, FACULTY) is session

    def test_autre_enseignant_refuse(self):
        db = MagicMock()
        db.get.return_value = make_session(faculty_id=uuid.uuid4())
        with pytest.raises(NotSessionOwner):
            get_owned_session(db, uuid.uuid4(), FACULTY)

    def test_admin_autorise(self):
        session = make_session(faculty_id=uuid.uuid4())
        db = MagicMock()
        db.get.return_value = session
        assert get_owned_session(db, session.id, ADMIN) is session

    def test_appel_interne_sans_controle(self):
        session = make_session(faculty_id=uuid.uuid4())
        db = MagicMock()
        db.get.return_value = session
        assert get_owned_session(db, session.id, None) is session

    def test_lectures_protegees(self):
        """QR code, pointages et export refusent un autre enseignant."""
        db = MagicMock()
        db.get.return_value = make_session(faculty_id=uuid.uuid4())

        for read in (get_session_qr_png, get_session_records, export_session_records_csv):
            with pytest.raises(NotSessionOwner):
                read(db, uuid.uuid4(), FACULTY)
        db.execute.assert_not_called()


# ----------------------------------------------------------------
# close_session
# ----------------------------------------------------------------

class TestCloseSession:
    def test_absents_marques_pour_membres_sans_pointage(self):
        session = make_session()
        a, b, c = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
        db = MagicMock()
        db.get.return_value = session
        db.execute.side_effect = [scalars_result([a, b, c]), scalars_result([a])]

        result = close_session(db, session.id, FACULTY, now=NOW)

        assert result.absent_marked == 2
        assert session.status == "completed"
        assert session.ended_at == NOW
        added = [call[0][0] for call in db.add.call_args_list]
        assert {r.student_id for r in added} == {b, c}
        assert all(r.status == "absent" and r.marked_by == FACULTY.id for r in added)
        db.commit.assert_called_once()

    def test_session_introuvable(self):
        db = MagicMock()
        db.get.return_value = None
        with pytest.raises(SessionNotFound):
            close_session(db, uuid.uuid4(), FACULTY)

    def test_session_deja_cloturee(self):
        db = MagicMock()
        db.get.return_value = make_session(status="completed")
        with pytest.raises(SessionClosed):
            close_session(db, uuid.uuid4(), FACULTY)
        db.commit.assert_not_called()

    def test_autre_enseignant_refuse(self):
        db = MagicMock()
        db.get.return_value = make_session(faculty_id=uuid.uuid4())
        with pytest.raises(NotSessionOwner):
            close_session(db, uuid.uuid4(), FACULTY)

    def test_cloture_automatique_sans_enseignant(self):
        session = make_session(faculty_id=uuid.uuid4())
        db = MagicMock()
        db.get.return_value = session
        db.execute.side_effect = [scalars_result([uuid.uuid4()]), scalars_result([])]

        result = close_session(db, session.id, faculty=None, now=NOW)

        assert result.absent_marked == 1
        assert db.add.call_args[0][0].marked_by is None

    def test_pointage_concurrent_recalcule_une_fois(self):
        """Un pointage inséré pendant la clôture : rollback puis nouveau calcul."""
        session = make_session()
        a, b = uuid.uuid4(), uuid.uuid4()
        db = MagicMock()
        db.get.return_value = session
        db.execute.side_effect = [
            scalars_result([a, b]), scalars_result([]),
            scalars_result([a, b]), scalars_result([a]),
        ]
        db.commit.side_effect = [IntegrityError("INSERT", {}, Exception("uq_attendance_session_student")), None]

        result = close_session(db, session.id, FACULTY, now=NOW)

        assert result.absent_marked == 1
        db.rollback.assert_called_once()
        assert db.commit.call_count == 2
        assert db.add.call_args[0][0].student_id == b

    def test_conflit_persistant(self):
        session = make_session()
        db = MagicMock()
        db.get.return_value = session
        db.execute.return_value = scalars_result([uuid.uuid4()])
        db.commit.side_effect = IntegrityError("INSERT", {}, Exception("uq_attendance_session_student"))

        with pytest.raises(SessionCloseConflict):
            close_session(db, session.id, FACULTY, now=NOW)
        assert db.rollback.call_count == 2


def test_close_expired_sessions():
    session = make_session()
    db = MagicMock()
    db.get.return_value = session
    db.execute.side_effect = [
        scalars_result([session.id]),
        scalars_result([uuid.uuid4()]),
        scalars_result([]),
    ]

    assert close_expired_sessions(db, now=NOW) == 1
    assert session.status == "completed"


def test_close_expired_sessions_continue_apres_un_echec():
    """Une session en conflit n'empêche pas la clôture des suivantes."""
    blocked, ok = make_session(), make_session()
    db = MagicMock()
    db.get.side_effect = lambda model, key: blocked if key == blocked.id else ok
    db.execute.side_effect = [
        scalars_result([blocked.id, ok.id]),
        scalars_result([uuid.uuid4()]), scalars_result([]),
        scalars_result([uuid.uuid4()]), scalars_result([]),
        scalars_result([uuid.uuid4()]), scalars_result([]),
    ]
    conflict = IntegrityError("INSERT", {}, Exception("uq_attendance_session_student"))
    db.commit.side_effect = [conflict, conflict, None]

    assert close_expired_sessions(db, now=NOW) == 1
    assert ok.status == "completed"


def test_close_expired_sessions_aucune():
    db = MagicMock()
    db.execute.return_value = scalars_result([])
    assert close_expired_sessions(db, now=NOW) == 0
    db.commit.assert_not_called()


# ----------------------------------------------------------------
# QR code et export
# ----------------------------------------------------------------

def test_qr_png_genere():
    db = MagicMock()
    db.get.return_value = make_session()

    png = get_session_qr_png(db, uuid.uuid4())

    assert png.startswith(b"\x89PNG")


def test_export_csv():
    session = make_session()
    record = AttendanceRecord(
        id=uuid.uuid4(),
        session_id=session.id,
        student_id=uuid.uuid4(),
        status="late",
        check_in_time=NOW,
        check_in_method="qr_scan",
        distance_from_faculty_meters=201.6,
    )
    db = MagicMock()
    db.get.return_value = session
    db.execute.return_value = scalars_result([record])

    content = export_session_records_csv(db, session.id)

    assert content.startswith("\ufeff")
    lines = content.lstrip("\ufeff").strip().splitlines()
    assert lines[0] == "student_id;status;check_in_time;check_in_method;distance_m"
    assert lines[1] == f"{record.student_id};late;2026-03-02 09:00:00;qr_scan;202"
