# Overview: Flask extension instances for database, migrations and background tasks.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

from .tasks import TaskRunner

db = SQLAlchemy()
migrate = Migrate()
tasks = TaskRunner()
