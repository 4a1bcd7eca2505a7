"""SQLAlchemy models package.

from modeler.models import Model, ModelHistory, ModelRelation
"""

from .common import new_model_id  # noqa: F401
from .model import Model, ModelHistory  # noqa: F401
from .relations import ModelRelation  # noqa: F401
