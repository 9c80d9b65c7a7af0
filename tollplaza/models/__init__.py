# Toll plaza core — Database Models
# Import all models here for SQLAlchemy discovery

from tollplaza.models.station import Station, Gate                        # noqa
from tollplaza.models.operator import Operator, GateAssignment            # noqa
from tollplaza.models.pricing import VehicleBodyType, BodyTypePrice       # noqa
from tollplaza.models.account import Account, BundleSubscription          # noqa
from tollplaza.models.vehicle import Vehicle                              # noqa
from tollplaza.models.passage import Passage                              # noqa
from tollplaza.models.detection_event import DetectionEvent               # noqa
