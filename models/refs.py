"""Reference models returned by the product/department classification service.

These are fetched per sync pass and never persisted.
"""

from typing import Optional
from pydantic import BaseModel, Field


class ReferenceProduct(BaseModel):
    """Normalized product classification.

    Attributes:
        code: Item code the lookup was made with
        material_code: Canonical material code (ERP ma_vt)
        product_type: Classification type (DIVU, VOUC, TPCN, SKIN, GIFT, ...)
        unit: Unit of measure
        track_inventory / track_serial / track_batch: Inventory tracking flags
        source: Which lookup matched ("code" or "legacy")
    """
    code: str = Field(..., description="Item code used for the lookup")
    material_code: Optional[str] = Field(None, description="Canonical material code")
    product_type: Optional[str] = Field(None, description="Classification type")
    unit: Optional[str] = Field(None, description="Unit of measure")
    name: Optional[str] = None
    track_inventory: Optional[bool] = None
    track_serial: bool = False
    track_batch: bool = False
    material_type: Optional[str] = None
    source: str = Field(default="code", description="Lookup that matched: code or legacy")

    class Config:
        frozen = True


class DepartmentRef(BaseModel):
    """Department metadata for a branch.

    IMPORTANT: department_code (ma_bp) drives warehouse codes; unit_code
    (ma_dvcs) is the accounting unit sent in the invoice header.
    """
    branch_code: str = Field(..., description="Branch code the lookup was made with")
    department_code: Optional[str] = Field(None, description="Accounting department code (ma_bp)")
    unit_code: Optional[str] = Field(None, description="Accounting unit code (ma_dvcs)")
    brand: Optional[str] = None
    company: Optional[str] = None
    department_type: Optional[str] = None

    class Config:
        frozen = True
