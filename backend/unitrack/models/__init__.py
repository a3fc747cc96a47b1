# Importe tous les modèles pour enregistrer leurs tables dans Base.metadata
# avant que SQLAlchemy tente de résoudre les clés étrangères inter-modèles.

from unitrack.models.user import User  # noqa: F401  (doit précéder group)
from unitrack.models.group import ClassAttendanceSettings, Group, GroupMember  # noqa: F401
from unitrack.models.attendance_session import AttendanceSession  # noqa: F401
from unitrack.models.attendance import AttendanceRecord  # noqa: F401
from unitrack.models.assignment import Assignment, Submission  # noqa: F401
