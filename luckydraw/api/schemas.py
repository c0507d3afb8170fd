from typing import Optional, List

from pydantic import BaseModel, Field, field_validator


# Request fields are optional on purpose: missing values are reported by the
# workflows as InvalidInput with a readable message rather than a schema dump.
class PhoneBody(BaseModel):
    phone: Optional[str] = None

    @field_validator("phone", mode="before")
    @classmethod
    def number_as_text(cls, value):
        # Clients sometimes send the phone as a JSON number.
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class DrawRequest(PhoneBody):
    pass


class AdminRequest(BaseModel):
    secret: Optional[str] = None


class AdminPhoneRequest(AdminRequest, PhoneBody):
    pass


class AdminCodeRequest(AdminRequest):
    code: Optional[str] = None


class AdminQueryRequest(AdminRequest):
    query: Optional[str] = None


class ReconcileRequest(AdminRequest):
    window_minutes: int = Field(5, ge=1, le=24 * 60)
    since: Optional[str] = None


class DrawResponse(BaseModel):
    code: str
    benefit_text: str


class OkResponse(BaseModel):
    ok: bool = True


class StockResponse(BaseModel):
    ss: int
    s: int
    a: int
    b: int
    total: int


class TicketCountResponse(BaseModel):
    count: int


class CodeItem(BaseModel):
    code: str
    short_code: str
    benefit_text: str
    rank: str
    status: str
    assigned_phone: Optional[str] = None
    assigned_at: Optional[str] = None
    redeemed_at: Optional[str] = None


class CodeListResponse(BaseModel):
    codes: List[CodeItem]


class TicketSummary(BaseModel):
    unused: int
    used: int
    total: int


class CustomerCode(BaseModel):
    code: str
    last4: str
    benefit_text: str
    status: str
    assigned_at: Optional[str] = None


class CustomerResponse(BaseModel):
    phone: str
    tickets: TicketSummary
    codes: List[CustomerCode]
