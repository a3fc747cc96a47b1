"""
Tests unitaires pour le marquage manuel, les sessions en cours et les bilans de présence.
"""

import uuid
from datetime import datetime
from unittest.mock import MagicMock

import pytest

from unitrack.auth import CurrentUser
from unitrack.models.attendance import AttendanceRecord
from unitrack.models.attendance_session import AttendanceSession
from unitrack.models.group import ClassAttendanceSettings, Group
from unitrack.schemas.attendance import ManualAttendanceCreate
from unitrack.services.attendance_service import (
    get_faculty_active_sessions,
    get_group_active_session,
    get_group_attendance_stats,
    get_group_attendance_summary,
    get_student_attendance_summary,
    get_student_session_history,
    get_students_with_low_attendance,
    mark_manual_attendance,
)
from unitrack.services.errors import NotSessionOwner, SessionNotFound

FACULTY = CurrentUser(id=uuid.uuid4(), role="faculty")


def make_session(faculty_id=None):
    s = MagicMock(spec=AttendanceSession)
    s.id = uuid.uuid4()
    s.group_id = uuid.uuid4()
    s.faculty_id = faculty_id or FACULTY.id
    return s


def scalars_result(values):
    r = MagicMock()
    r.scalars.return_value.all.return_value = values
    return r


# ----------------------------------------------------------------
# mark_manual_attendance
# ----------------------------------------------------------------

class TestMarkManual:
    def test_creation_si_aucun_pointage(self):
        session = make_session()
        db = MagicMock()
        db.get.return_value = session
        db.execute.return_value.scalar.return_value = None
        data = ManualAttendanceCreate(
            session_id=session.id, student_id=uuid.uuid4(), status="Excused", manual_reason="Certificat"
        )

        resp = mark_manual_attendance(db, data, FACULTY)

        record = db.add.call_args[0][0]
        assert record.check_in_method == "manual_faculty"
        assert resp.status == "excused"
        assert resp.marked_by == FACULTY.id
        assert resp.manual_reason == "Certificat"
        db.commit.assert_called_once()

    def test_correction_pointage_existant(self):
        session = make_session()
        existing = AttendanceRecord(
            id=uuid.uuid4(),
            session_id=session.id,
            student_id=uuid.uuid4(),
            status="late",
            check_in_time=datetime(2026, 3, 2, 9, 3),
            check_in_method="qr_scan",
        )
        db = MagicMock()
        db.get.return_value = session
        db.execute.return_value.scalar.return_value = existing
        data = ManualAttendanceCreate(session_id=session.id, student_id=existing.student_id, status="present")

        resp = mark_manual_attendance(db, data, FACULTY)

        db.add.assert_not_called()
        assert existing.status == "present"
        assert resp.id == existing.id
        assert resp.check_in_method == "manual_faculty"

    def test_session_introuvable(self):
        db = MagicMock()
        db.get.return_value = None
        data = ManualAttendanceCreate(session_id=uuid.uuid4(), student_id=uuid.uuid4(), status="present")
        with pytest.raises(SessionNotFound):
            mark_manual_attendance(db, data, FACULTY)

    def test_autre_enseignant_refuse(self):
        db = MagicMock()
        db.get.return_value = make_session(faculty_id=uuid.uuid4())
        data = ManualAttendanceCreate(session_id=uuid.uuid4(), student_id=uuid.uuid4(), status="present")
        with pytest.raises(NotSessionOwner):
            mark_manual_attendance(db, data, FACULTY)
        db.commit.assert_not_called()

    def test_statut_invalide(self):
        with pytest.raises(ValueError):
            ManualAttendanceCreate(session_id=uuid.uuid4(), student_id=uuid.uuid4(), status="asleep")


# ----------------------------------------------------------------
# get_student_attendance_summary
# ----------------------------------------------------------------

class TestAttendanceSummary:
    def test_bilan_complet(self):
        """5 sessions : 2 present, 1 late, 1 absent marqué, 1 sans pointage."""
        db = MagicMock()
        db.execute.side_effect = [
            scalars_result([uuid.uuid4() for _ in range(5)]),
            scalars_result(["present", "present", "late", "absent"]),
        ]

        summary = get_student_attendance_summary(db, uuid.uuid4(), uuid.uuid4())

        assert summary.total_sessions == 5
        assert summary.attended_sessions == 3
        assert summary.present_sessions == 2
        assert summary.late_sessions == 1
        assert summary.absent_sessions == 2
        assert summary.attendance_percentage == 60.0

    def test_excuse_ne_compte_pas_comme_presence(self):
        db = MagicMock()
        db.execute.side_effect = [
            scalars_result([uuid.uuid4() for _ in range(3)]),
            scalars_result(["present", "excused"]),
        ]

        summary = get_student_attendance_summary(db, uuid.uuid4(), uuid.uuid4())

        assert summary.excused_sessions == 1
        assert summary.absent_sessions == 1
        assert summary.attendance_percentage == 33.3

    def test_aucune_session(self):
        db = MagicMock()
        db.execute.side_effect = [scalars_result([]), scalars_result([])]

        summary = get_student_attendance_summary(db, uuid.uuid4(), uuid.uuid4())

        assert summary.total_sessions == 0
        assert summary.attendance_percentage == 0.0


# ----------------------------------------------------------------
# Bilans de groupe
# ----------------------------------------------------------------

def rows_result(rows):
    r = MagicMock()
    r.all.return_value = rows
    return r


def member(name=None, email="etu@univ.edu", usn=None):
    m = MagicMock()
    m.student_id = uuid.uuid4()
    m.name = name
    m.email = email
    m.usn = usn
    return m


def record_row(student_id, status):
    r = MagicMock()
    r.student_id = student_id
    r.status = status
    return r


def group_summary_db(total_sessions, members, records):
    db = MagicMock()
    db.execute.side_effect = [
        scalars_result([uuid.uuid4() for _ in range(total_sessions)]),
        rows_result(members),
        rows_result(records),
    ]
    return db


class TestGroupSummary:
    def test_bilan_trie_par_taux_decroissant(self):
        alice, bob = member("Alice", usn="1RV21CS001"), member(None, email="bob@univ.edu")
        db = group_summary_db(4, [alice, bob], [
            record_row(alice.student_id, "present"),
            record_row(bob.student_id, "present"),
            record_row(bob.student_id, "late"),
            record_row(bob.student_id, "present"),
        ])

        summaries = get_group_attendance_summary(db, uuid.uuid4())

        assert [s.student_id for s in summaries] == [bob.student_id, alice.student_id]
        assert summaries[0].attendance_percentage == 75.0
        assert summaries[0].student_name == "bob@univ.edu"
        assert summaries[1].student_name == "Alice"
        assert summaries[1].usn == "1RV21CS001"
        assert summaries[1].absent_sessions == 3

    def test_groupe_sans_membre(self):
        db = MagicMock()
        db.execute.side_effect = [scalars_result([uuid.uuid4()]), rows_result([])]
        assert get_group_attendance_summary(db, uuid.uuid4()) == []


class TestLowAttendance:
    def test_seuil_du_groupe(self):
        alice, bob = member("Alice"), member("Bob")
        db = group_summary_db(4, [alice, bob], [
            record_row(alice.student_id, "present"),
            record_row(alice.student_id, "present"),
            record_row(alice.student_id, "present"),
            record_row(bob.student_id, "present"),
        ])
        db.get.return_value = ClassAttendanceSettings(notification_threshold_percentage=80.0)

        low = get_students_with_low_attendance(db, uuid.uuid4())

        # Alice à 75 %, Bob à 25 % : tous deux sous 80 %, le plus faible d'abord
        assert [s.student_id for s in low] == [bob.student_id, alice.student_id]

    def test_seuil_par_defaut_70(self):
        alice, bob = member("Alice"), member("Bob")
        db = group_summary_db(4, [alice, bob], [
            record_row(alice.student_id, "present"),
            record_row(alice.student_id, "late"),
            record_row(alice.student_id, "present"),
            record_row(bob.student_id, "present"),
        ])
        db.get.return_value = None

        low = get_students_with_low_attendance(db, uuid.uuid4())

        assert [s.student_id for s in low] == [bob.student_id]

    def test_seuil_explicite(self):
        alice = member("Alice")
        db = group_summary_db(2, [alice], [record_row(alice.student_id, "present")])

        assert get_students_with_low_attendance(db, uuid.uuid4(), threshold=40.0) == []
        db.get.assert_not_called()

    def test_aucune_session_aucune_alerte(self):
        db = group_summary_db(0, [member("Alice")], [])
        db.get.return_value = None
        assert get_students_with_low_attendance(db, uuid.uuid4()) == []


class TestGroupStats:
    def test_moyenne(self):
        """2 sessions clôturées, 4 étudiants, 6 présences : 75 %."""
        students, attended = MagicMock(), MagicMock()
        students.scalar.return_value = 4
        attended.scalar.return_value = 6
        db = MagicMock()
        db.execute.side_effect = [scalars_result([uuid.uuid4(), uuid.uuid4()]), students, attended]

        stats = get_group_attendance_stats(db, uuid.uuid4())

        assert stats.total_sessions == 2
        assert stats.total_students == 4
        assert stats.average_attendance == 75.0

    def test_sans_session_cloturee(self):
        count = MagicMock()
        count.scalar.return_value = 4
        db = MagicMock()
        db.execute.side_effect = [scalars_result([]), count]

        stats = get_group_attendance_stats(db, uuid.uuid4())

        assert stats.average_attendance == 0
        assert db.execute.call_count == 2


# ----------------------------------------------------------------
# Historique et sessions en cours
# ----------------------------------------------------------------

def history_session(status, created_at):
    return AttendanceSession(
        id=uuid.uuid4(),
        group_id=uuid.uuid4(),
        session_name="Réseaux - TD",
        session_type="tutorial",
        status=status,
        created_at=created_at,
        expires_at=created_at,
    )


class TestStudentHistory:
    def test_statuts_par_session(self):
        student_id = uuid.uuid4()
        ouverte = history_session("active", datetime(2026, 3, 9, 9, 0))
        pointee = history_session("completed", datetime(2026, 3, 2, 9, 0))
        manquee = history_session("completed", datetime(2026, 2, 23, 9, 0))
        record = AttendanceRecord(
            id=uuid.uuid4(),
            session_id=pointee.id,
            student_id=student_id,
            status="late",
            check_in_time=datetime(2026, 3, 2, 9, 4),
            check_in_method="qr_scan",
            student_latitude=12.97,
            student_longitude=77.59,
        )
        db = MagicMock()
        db.execute.side_effect = [scalars_result([ouverte, pointee, manquee]), scalars_result([record])]

        history = get_student_session_history(db, student_id, uuid.uuid4())

        assert [h.attendance_status for h in history] == ["pending", "late", "absent"]
        assert history[1].marked_at == datetime(2026, 3, 2, 9, 4)
        assert history[1].location_verified is True
        assert history[2].location_verified is False

    def test_groupe_sans_session(self):
        db = MagicMock()
        db.execute.return_value = scalars_result([])
        assert get_student_session_history(db, uuid.uuid4(), uuid.uuid4()) == []
        assert db.execute.call_count == 1


def active_row(expires_at):
    group = Group(id=uuid.uuid4(), name="CS-3A", subject="Algorithmique", subject_code="CS301")
    session = AttendanceSession(
        id=uuid.uuid4(),
        group_id=group.id,
        faculty_id=FACULTY.id,
        qr_token="abc123",
        session_name="Algorithmique - CM 4",
        session_type="lecture",
        faculty_latitude=12.9716,
        faculty_longitude=77.5946,
        allowed_radius_meters=20.0,
        status="active",
        expires_at=expires_at,
    )
    return session, group


class TestActiveSessions:
    NOW = datetime(2026, 3, 2, 9, 0)

    def test_session_active_du_groupe(self):
        db = MagicMock()
        db.execute.return_value.first.return_value = active_row(datetime(2026, 3, 2, 9, 3))

        resp = get_group_active_session(db, uuid.uuid4(), now=self.NOW)

        assert resp.group_name == "CS-3A"
        assert resp.subject_code == "CS301"
        assert resp.qr_status == "active"
        assert resp.minutes_until_qr_expiry == 3.0

    def test_aucune_session_active(self):
        db = MagicMock()
        db.execute.return_value.first.return_value = None
        assert get_group_active_session(db, uuid.uuid4(), now=self.NOW) is None

    def test_sessions_de_l_enseignant(self):
        db = MagicMock()
        db.execute.return_value.all.return_value = [
            active_row(datetime(2026, 3, 2, 9, 5)),
            active_row(datetime(2026, 3, 2, 8, 50)),
        ]

        sessions = get_faculty_active_sessions(db, FACULTY, now=self.NOW)

        assert [s.qr_status for s in sessions] == ["active", "expired"]
        assert sessions[1].minutes_until_qr_expiry == 0.0
