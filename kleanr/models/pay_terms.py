from pydantic import BaseModel, Field
from typing import Annotated, Literal, Optional, Union
from uuid import UUID


class HourlyPay(BaseModel):
    kind: Literal["hourly"] = "hourly"
    rate: int = Field(ge=0)  # Centavos por hora


class FlatRatePay(BaseModel):
    kind: Literal["flat_rate"] = "flat_rate"
    amount: int = Field(ge=0)  # Centavos por trabajo


class PercentagePay(BaseModel):
    kind: Literal["percentage"] = "percentage"
    rate: float = Field(ge=0, le=100)  # Porcentaje literal del precio total


class SelfAssignmentPay(BaseModel):
    """El dueño limpia junto a su equipo: gana margen, no pago."""
    kind: Literal["self_assignment"] = "self_assignment"


PayTerms = Annotated[
    Union[HourlyPay, FlatRatePay, PercentagePay, SelfAssignmentPay],
    Field(discriminator="kind"),
]


class SplitWorker(BaseModel):
    worker_id: Optional[UUID] = None
    pay: PayTerms


class WorkerSplit(BaseModel):
    worker_id: Optional[UUID] = None
    adjusted_duration_hours: float
    pay_amount: int  # Centavos
    pay_type: str  # hourly | flat_rate | percentage | none
