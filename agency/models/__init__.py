from agency.models.user import User  # noqa: F401
from agency.models.client import Client  # noqa: F401
from agency.models.budget import Budget  # noqa: F401
from agency.models.project import Project, Schedule  # noqa: F401
from agency.models.contract import Contract  # noqa: F401
from agency.models.payment import Payment  # noqa: F401
from agency.models.notification import Notification  # noqa: F401
from agency.models.activity_log import ActivityLog  # noqa: F401
