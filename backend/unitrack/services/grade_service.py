"""
Calcul des moyennes (GPA sur 4.0) d'un groupe à partir des rendus notés.

Règle de moyenne de classe : seuls les étudiants ayant au moins un rendu noté
entrent dans class_average_gpa / class_average_score. Les étudiants sans rendu
restent listés (gpa = 0) mais n'abaissent pas la moyenne.
"""

import logging
import uuid
from collections import defaultdict
from typing import Dict, Iterable, List, NamedTuple, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from unitrack.models.assignment import Assignment, Submission
from unitrack.models.group import GroupMember
from unitrack.models.user import User
from unitrack.schemas.grade import GradeSummary, GroupGradeStats

logger = logging.getLogger(__name__)

# (pourcentage minimal, GPA), du plus haut au plus bas
GPA_SCALE = [
    (90, 4.0),
    (85, 3.7),
    (80, 3.3),
    (75, 3.0),
    (70, 2.7),
    (65, 2.3),
    (60, 2.0),
    (55, 1.7),
    (50, 1.3),
    (45, 1.0),
]


class GradedSubmission(NamedTuple):
    """Forme canonique d'un rendu noté, produite juste après la requête."""
    student_id: uuid.UUID
    assignment_id: uuid.UUID
    total_score: float


class MemberInfo(NamedTuple):
    student_id: uuid.UUID
    name: str
    email: str
    usn: str


def gpa_from_percentage(percentage: float) -> float:
    for threshold, gpa in GPA_SCALE:
        if percentage >= threshold:
            return gpa
    return 0.0


def empty_stats(group_id: uuid.UUID) -> GroupGradeStats:
    return GroupGradeStats(
        group_id=group_id,
        students=[],
        class_average_gpa=0,
        class_average_score=0,
        total_students=0,
        assignment_completion_rate=0,
    )


def compute_group_stats(
    group_id: uuid.UUID,
    max_scores: Dict[uuid.UUID, float],
    members: Iterable[MemberInfo],
    submissions: Iterable[GradedSubmission],
) -> GroupGradeStats:
    """
    Agrège les rendus notés par étudiant puis calcule les statistiques de classe.
    Fonction pure : aucune requête, testable sans base de données.
    """
    if not max_scores:
        return empty_stats(group_id)

    by_student: Dict[uuid.UUID, List[GradedSubmission]] = defaultdict(list)
    for sub in submissions:
        if sub.assignment_id in max_scores:
            by_student[sub.student_id].append(sub)

    total_assignments = len(max_scores)
    students: List[GradeSummary] = []

    for member in members:
        subs = by_student.get(member.student_id, [])
        earned = sum(s.total_score for s in subs)
        possible = sum(max_scores[s.assignment_id] for s in subs)
        completed = len(subs)

        percentage = (earned / possible) * 100 if possible > 0 else 0.0
        completion_rate = (completed / total_assignments) * 100

        students.append(GradeSummary(
            student_id=member.student_id,
            student_name=member.name,
            student_email=member.email,
            usn=member.usn,
            total_points_earned=earned,
            total_points_possible=possible,
            percentage=round(percentage, 1),
            gpa=round(gpa_from_percentage(percentage), 2),
            completed_assignments=completed,
            total_assignments=total_assignments,
            completion_rate=round(completion_rate, 1),
        ))

    graded = [s for s in students if s.completed_assignments > 0]
    class_gpa = sum(s.gpa for s in graded) / len(graded) if graded else 0.0
    class_score = sum(s.percentage for s in graded) / len(graded) if graded else 0.0
    completion = sum(s.completion_rate for s in students) / len(students) if students else 0.0

    students.sort(key=lambda s: s.gpa, reverse=True)

    return GroupGradeStats(
        group_id=group_id,
        students=students,
        class_average_gpa=round(class_gpa, 2),
        class_average_score=round(class_score, 1),
        total_students=len(students),
        assignment_completion_rate=round(completion, 1),
    )


def get_group_student_grades(db: Session, group_id: uuid.UUID) -> GroupGradeStats:
    """
    Calcule le GPA de chaque membre actif du groupe.

    Étapes :
    1. Devoirs du groupe (aucun → statistiques à zéro, pas d'erreur)
    2. Membres actifs avec leur profil
    3. Rendus notés (total_score non NULL) des membres pour ces devoirs
    4. Agrégation (compute_group_stats)
    """
    assignments = db.execute(
        select(Assignment.id, Assignment.max_score).where(Assignment.group_id == group_id)
    ).all()

    if not assignments:
        logger.info("Groupe %s : aucun devoir, statistiques à zéro", group_id)
        return empty_stats(group_id)

    max_scores = {row.id: float(row.max_score or 0) for row in assignments}

    member_rows = db.execute(
        select(GroupMember.student_id, User.name, User.email, User.usn)
        .outerjoin(User, User.id == GroupMember.student_id)
        .where(
            GroupMember.group_id == group_id,
            GroupMember.status == "active",
        )
    ).all()
    members = [
        MemberInfo(
            student_id=row.student_id,
            name=row.name or "Étudiant inconnu",
            email=row.email or "",
            usn=row.usn or "",
        )
        for row in member_rows
    ]
    student_ids = [m.student_id for m in members]

    submission_rows = db.execute(
        select(Submission.student_id, Submission.assignment_id, Submission.total_score)
        .where(
            Submission.assignment_id.in_(list(max_scores)),
            Submission.student_id.in_(student_ids),
            Submission.total_score.is_not(None),
        )
    ).all() if student_ids else []
    submissions = [
        GradedSubmission(row.student_id, row.assignment_id, float(row.total_score))
        for row in submission_rows
    ]

    stats = compute_group_stats(group_id, max_scores, members, submissions)
    logger.info(
        "Groupe %s : %d étudiants, moyenne GPA %.2f",
        group_id, stats.total_students, stats.class_average_gpa,
    )
    return stats


def get_student_grade_details(
    db: Session, student_id: uuid.UUID, group_id: uuid.UUID
) -> Optional[GradeSummary]:
    stats = get_group_student_grades(db, group_id)
    return next((s for s in stats.students if s.student_id == student_id), None)


def get_top_performers(db: Session, group_id: uuid.UUID, limit: int = 3) -> List[GradeSummary]:
    return get_group_student_grades(db, group_id).students[:limit]
