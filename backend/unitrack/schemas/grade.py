"""
Schémas Pydantic pour les moyennes (GPA) calculées à la volée.
Jamais persistés : recalculés à chaque requête.
"""

import uuid
from typing import List

from pydantic import BaseModel


class GradeSummary(BaseModel):
    student_id: uuid.UUID
    student_name: str = ""
    student_email: str = ""
    usn: str = ""
    total_points_earned: float
    total_points_possible: float
    percentage: float
    gpa: float
    completed_assignments: int
    total_assignments: int
    completion_rate: float


class GroupGradeStats(BaseModel):
    group_id: uuid.UUID
    students: List[GradeSummary]
    class_average_gpa: float
    class_average_score: float
    total_students: int
    assignment_completion_rate: float
