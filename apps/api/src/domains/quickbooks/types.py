# apps/api/src/domains/quickbooks/types.py
"""
Wire-format models for the QuickBooks Online Accounting API.

Field names follow the QuickBooks JSON casing so that ``model_dump`` with
``by_alias`` produces the request body directly.
"""
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer

# QuickBooks expects JSON numbers for amounts
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class QBOBaseModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class QBORef(QBOBaseModel):
    value: str
    name: Optional[str] = None


class QBOSalesItemLineDetail(QBOBaseModel):
    ItemRef: Optional[QBORef] = None
    Qty: Optional[Money] = None
    UnitPrice: Optional[Money] = None
    TaxCodeRef: Optional[QBORef] = None


class QBODiscountLineDetail(QBOBaseModel):
    PercentBased: bool = False
    DiscountAccountRef: Optional[QBORef] = None


class QBOLinkedTxn(QBOBaseModel):
    TxnId: str
    TxnType: str = "Invoice"


class QBOLine(QBOBaseModel):
    Amount: Money
    DetailType: Optional[str] = None
    Description: Optional[str] = None
    SalesItemLineDetail: Optional[QBOSalesItemLineDetail] = None
    DiscountLineDetail: Optional[QBODiscountLineDetail] = None
    LinkedTxn: Optional[List[QBOLinkedTxn]] = None


class QBOTxnTaxDetail(QBOBaseModel):
    TotalTax: Money


class _QBOPayload(QBOBaseModel):
    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(
            mode="json", by_alias=True, exclude_none=True, exclude={"entity_type"}
        )


class QBOInvoicePayload(_QBOPayload):
    entity_type: Literal["invoice"] = "invoice"

    CustomerRef: QBORef
    Line: List[QBOLine]
    TxnTaxDetail: Optional[QBOTxnTaxDetail] = None
    DocNumber: Optional[str] = None
    TxnDate: Optional[str] = None
    DueDate: Optional[str] = None
    PrivateNote: Optional[str] = None

    @property
    def endpoint(self) -> str:
        return "invoice"


class QBOPaymentPayload(_QBOPayload):
    entity_type: Literal["payment"] = "payment"

    TotalAmt: Money
    CustomerRef: QBORef
    Line: Optional[List[QBOLine]] = None
    PaymentRefNum: Optional[str] = None
    TxnDate: Optional[str] = None
    PrivateNote: Optional[str] = None
    DepositToAccountRef: Optional[QBORef] = None

    @property
    def endpoint(self) -> str:
        return "payment"

    @property
    def linked_invoice_id(self) -> Optional[str]:
        for line in self.Line or []:
            for txn in line.LinkedTxn or []:
                if txn.TxnType == "Invoice":
                    return txn.TxnId
        return None


RemotePayload = Annotated[
    Union[QBOInvoicePayload, QBOPaymentPayload], Field(discriminator="entity_type")
]


class QBOCredentials(BaseModel):
    """Bearer token plus realm context for one API call."""

    access_token: str
    realm_id: str


class QBOTokenResponse(BaseModel):
    """Response from the Intuit OAuth token endpoint."""

    access_token: str = Field(..., description="Access token for API calls")
    refresh_token: str = Field(..., description="Rotated refresh token")
    expires_in: Optional[int] = Field(None, description="Access token lifetime in seconds")
    token_type: str = Field(default="bearer", description="Token type")
    refresh_token_expires_in: Optional[int] = Field(
        None, description="Refresh token lifetime in seconds"
    )
    x_refresh_token_expires_in: Optional[int] = Field(
        None, description="Legacy name for refresh token lifetime"
    )

    @property
    def refresh_lifetime_seconds(self) -> Optional[int]:
        return self.refresh_token_expires_in or self.x_refresh_token_expires_in


class QBOFaultError(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    Message: Optional[str] = None
    Detail: Optional[str] = None
    code: str = "UNKNOWN"
    element: Optional[str] = None


class QBOFault(BaseModel):
    model_config = ConfigDict(extra="ignore")

    Error: List[QBOFaultError] = Field(default_factory=list)
    type: Optional[str] = None

    @property
    def first(self) -> Optional[QBOFaultError]:
        return self.Error[0] if self.Error else None


class QBOCreatedEntity(BaseModel):
    """The fields of a created resource the sync engine keeps."""

    model_config = ConfigDict(extra="allow")

    Id: str
    SyncToken: Optional[str] = None
    UnappliedAmt: Optional[Decimal] = None
