# Importe tous les modèles pour enregistrer leurs tables dans Base.metadata
# avant que SQLAlchemy tente de résoudre les clés étrangères inter-modèles.

from guardtour.models.guard import Guard  # noqa: F401  doit précéder shift
from guardtour.models.route import Checkpoint, Route  # noqa: F401
from guardtour.models.shift import Shift  # noqa: F401
from guardtour.models.scan_event import DownloadLog, ScanEvent  # noqa: F401
from guardtour.models.round import Round, Waypoint  # noqa: F401
