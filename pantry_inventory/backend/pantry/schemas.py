from pydantic import BaseModel, ConfigDict, Field, computed_field
from datetime import datetime
from typing import List, Literal, Optional

from pantry.config import LOW_STOCK_THRESHOLD

UNITS = ("kg", "unidade")
Unit = Literal["kg", "unidade"]


def stock_status(quantity: float) -> str:
    if quantity <= 0:
        return "out-of-stock"
    if quantity <= LOW_STOCK_THRESHOLD:
        return "low-stock"
    return "in-stock"


# -- users / auth ------------------------------------------------------------

class UserSchema(BaseModel):
    id: str
    email: str
    full_name: str
    is_super_admin: bool
    is_approved: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

class SignUpRequest(BaseModel):
    email: str
    password: str
    full_name: str = Field(min_length=1, max_length=200)

class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int

class UserListing(BaseModel):
    users: List[UserSchema]
    pending: List[UserSchema]
    approved: List[UserSchema]

class GateDecisionSchema(BaseModel):
    view: str
    tabs: List[str]
    user: Optional[UserSchema] = None


# -- items -------------------------------------------------------------------

class ItemBase(BaseModel):
    name: str
    quantity: float
    unit: Unit
    category: Optional[str] = None

class ItemCreate(ItemBase):
    name: str = Field(min_length=1, max_length=200)
    quantity: float = Field(ge=0)

class ItemSchema(ItemBase):
    id: str
    created_by: Optional[str] = None
    created_at: datetime
    removal_requested: bool = False
    requested_by: Optional[str] = None
    requested_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @computed_field
    @property
    def stock_status(self) -> str:
        return stock_status(self.quantity)


# -- withdrawals ---------------------------------------------------------------

class WithdrawalCreate(BaseModel):
    quantity: float

class ItemSummary(BaseModel):
    name: str
    unit: Unit

class UserSummary(BaseModel):
    full_name: str

class WithdrawalSchema(BaseModel):
    id: str
    item_id: Optional[str] = None
    user_id: Optional[str] = None
    quantity: float
    withdrawn_at: datetime
    item: Optional[ItemSummary] = None
    user: Optional[UserSummary] = None

    model_config = ConfigDict(from_attributes=True)

class WithdrawalReceipt(BaseModel):
    withdrawal: WithdrawalSchema
    item: ItemSchema

class DashboardStats(BaseModel):
    total_items: int
    total_withdrawals: int
    monthly_withdrawals: int
    low_stock_items: int
    out_of_stock_items: int


# -- reports -------------------------------------------------------------------

class TopItem(BaseModel):
    item_name: str
    total_quantity: float
    withdrawal_count: int

class MonthlyReport(BaseModel):
    year_month: str
    month: str
    total_withdrawals: int
    total_quantity: float
    unique_users: int
    average_per_user: float
    top_items: List[TopItem]
