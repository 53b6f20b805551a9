from datetime import datetime
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field
from typing_extensions import Annotated


# Step input is a tagged variant: the step_type decides which external id is required.
class PageStepIn(BaseModel):
    step_type: Literal["page"]
    page_id: int = Field(..., gt=0)
    step_name: str = Field("", max_length=255)


class FormStepIn(BaseModel):
    step_type: Literal["form"]
    form_id: int = Field(..., gt=0)
    step_name: str = Field("", max_length=255)


FunnelStepIn = Annotated[Union[PageStepIn, FormStepIn], Field(discriminator="step_type")]


class FunnelStep(BaseModel):
    id: int
    funnel_id: int
    step_order: int
    step_type: str
    step_name: str = ""
    page_id: Optional[int] = None
    form_id: Optional[int] = None

    class Config:
        from_attributes = True


class FunnelBase(BaseModel):
    name: str
    description: Optional[str] = ""


class FunnelCreate(FunnelBase):
    steps: List[FunnelStepIn] = []


class FunnelUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    # Present means "replace every step"; absent leaves steps untouched
    steps: Optional[List[FunnelStepIn]] = None


class Funnel(FunnelBase):
    id: int
    status: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class FunnelWithSteps(Funnel):
    steps: List[FunnelStep] = []


class FunnelPage(BaseModel):
    items: List[FunnelWithSteps]
    total_items: int
    total_pages: int
    current_page: int
    per_page: int
