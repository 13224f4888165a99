# affiliate_system/schemas/postback.py
"""
Reconciliation payload schemas.

Each network reports sales in its own shape. The program's network picks the
variant; unknown fields and missing required fields are rejected rather than
defaulted.
"""
from decimal import Decimal
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from affiliate_system.errors import PostbackValidationError

# Network status words -> lifecycle status
STATUS_ALIASES = {
    "pending": "pending",
    "open": "pending",
    "new": "pending",
    "confirmed": "confirmed",
    "approved": "confirmed",
    "validated": "confirmed",
    "accepted": "confirmed",
    "cancelled": "cancelled",
    "canceled": "cancelled",
    "declined": "cancelled",
    "rejected": "cancelled",
    "refused": "cancelled",
}

ReportedStatus = Literal["pending", "confirmed", "cancelled"]


def normalizeStatus(value: Any) -> str:
    if value is None or value == "":
        return "pending"
    status = STATUS_ALIASES.get(str(value).strip().lower())
    if status is None:
        raise ValueError(f"unknown status '{value}'")
    return status


class SaleReport(BaseModel):
    """Network-independent view of one reported sale."""
    ambassadorRef: str
    orderRef: str
    amount: Decimal
    commission: Optional[Decimal] = None
    status: ReportedStatus = "pending"
    secret: Optional[str] = None


class _PostbackBase(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    commission: Optional[Decimal] = Field(default=None, ge=0)
    status: ReportedStatus = "pending"
    secret: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, value):
        return normalizeStatus(value)


class AwinPostback(_PostbackBase):
    """Query-string postback."""
    source: Literal["awin"]
    clickRef: str = Field(min_length=1)
    transactionAmount: Decimal = Field(ge=0)
    orderRef: str = Field(min_length=1)

    def toReport(self) -> SaleReport:
        return SaleReport(
            ambassadorRef=self.clickRef,
            orderRef=self.orderRef,
            amount=self.transactionAmount,
            commission=self.commission,
            status=self.status,
            secret=self.secret
        )


class AffilaePostback(_PostbackBase):
    """JSON body postback."""
    source: Literal["affilae"]
    sub_id: str = Field(min_length=1)
    amount: Decimal = Field(ge=0)
    order_id: str = Field(min_length=1)

    def toReport(self) -> SaleReport:
        return SaleReport(
            ambassadorRef=self.sub_id,
            orderRef=self.order_id,
            amount=self.amount,
            commission=self.commission,
            status=self.status,
            secret=self.secret
        )


class DirectPostback(_PostbackBase):
    """Query-string postback used by direct merchants."""
    source: Literal["direct"]
    subid: str = Field(min_length=1)
    amount: Decimal = Field(ge=0)
    orderref: str = Field(min_length=1)

    def toReport(self) -> SaleReport:
        return SaleReport(
            ambassadorRef=self.subid,
            orderRef=self.orderref,
            amount=self.amount,
            commission=self.commission,
            status=self.status,
            secret=self.secret
        )


class GenericPostback(_PostbackBase):
    """JSON body postback for every other network."""
    source: Literal["generic"]
    ambassador_ref: str = Field(min_length=1)
    order_ref: str = Field(min_length=1)
    amount: Decimal = Field(ge=0)

    def toReport(self) -> SaleReport:
        return SaleReport(
            ambassadorRef=self.ambassador_ref,
            orderRef=self.order_ref,
            amount=self.amount,
            commission=self.commission,
            status=self.status,
            secret=self.secret
        )


PostbackPayload = Annotated[
    Union[AwinPostback, AffilaePostback, DirectPostback, GenericPostback],
    Field(discriminator="source")
]
postbackAdapter = TypeAdapter(PostbackPayload)

QUERY_NETWORKS = ("awin", "direct")
TAGGED_NETWORKS = ("awin", "affilae", "direct")


def variantFor(network: Optional[str]) -> str:
    return network if network in TAGGED_NETWORKS else "generic"


def parsePostback(network: Optional[str], query: Dict[str, Any], body: Dict[str, Any]) -> SaleReport:
    """
    Validate a raw postback for a program's network.
    Query-string networks read the query only; the others read the JSON body only.
    """
    source = variantFor(network)
    raw = query if source in QUERY_NETWORKS else body
    if not isinstance(raw, dict):
        raise PostbackValidationError("Postback payload must be an object", {"network": network})

    payload = dict(raw)
    payload["source"] = source

    try:
        return postbackAdapter.validate_python(payload).toReport()
    except ValidationError as e:
        errors = [
            {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise PostbackValidationError("Malformed postback payload", {"network": network, "errors": errors})
