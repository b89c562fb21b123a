from .auth_api import AuthApi
from .tasks_api import TasksApi

__all__ = ["AuthApi", "TasksApi"]
