# Módulo models: define las clases y estructuras de datos principales (SQLModel/Pydantic)
# El orden de las importaciones es importante para la creación de las tablas en la base de datos
# Las tablas con claves foráneas deben importarse después de las tablas que referencian

from .tier_config import TierConfigVersion, TierThreshold, TierThresholdCreate, TierPerks
from .cleaner_tier_status import CleanerTierStatus, CleanerPerkStatus
from .preferred_relationship import PreferredRelationship
from .job_assignment import JobAssignment, JobAssignmentStatus, PayType
from .pending_payout import PendingPayout, PayoutStatus, PayoutPriority
from .cancellation import CancellationPolicy, CancellationPolicyCreate
from .user_bill import UserBill
