"""Read-only views of the orders and rentals that invoices are billed from.

These are owned by the Order and Rental modules. The billing core never
mutates them.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class OrderStatus(str, Enum):
    REQUESTED = "REQUESTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    INVOICED = "INVOICED"
    COMPLETED = "COMPLETED"


class RentalStatus(str, Enum):
    REQUESTED = "REQUESTED"
    APPROVED = "APPROVED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class AssetType(str, Enum):
    COLD_BOX = "COLD_BOX"
    COLD_PLATE = "COLD_PLATE"
    TRICYCLE = "TRICYCLE"

    @property
    def label(self) -> str:
        """Human label used in invoice line descriptions."""
        return self.value.replace("_", " ").title()


class OrderItemView(BaseModel):
    """One ordered product, priced at order time."""

    product_name: str
    unit: str
    quantity: Decimal = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0)


class OrderView(BaseModel):
    id: UUID
    site_id: UUID
    client_id: UUID
    status: OrderStatus
    items: list[OrderItemView] = Field(default_factory=list)
    approved_by: UUID | None = None
    approved_at: datetime | None = None
    deleted_at: datetime | None = None


class RentalView(BaseModel):
    """
    Rental with whichever asset it references.

    A well-formed rental references exactly one of cold box, cold plate or
    tricycle; the identifier fields are populated for the attached asset only.
    """

    id: UUID
    site_id: UUID
    client_id: UUID
    status: RentalStatus
    cold_box_id: UUID | None = None
    cold_box_identification: str | None = None
    cold_plate_id: UUID | None = None
    cold_plate_identification: str | None = None
    tricycle_id: UUID | None = None
    tricycle_plate_number: str | None = None
    rental_start_date: datetime
    rental_end_date: datetime
    estimated_fee: Decimal | None = None
    actual_fee: Decimal | None = None
    approved_at: datetime | None = None
    deleted_at: datetime | None = None

    @property
    def fee(self) -> Decimal | None:
        """Actual fee when known, else the estimate."""
        return self.actual_fee if self.actual_fee is not None else self.estimated_fee

    def attached_assets(self) -> list[tuple[AssetType, str | None]]:
        """(asset type, identifier) for every asset this rental references."""
        assets = []
        if self.cold_box_id is not None:
            assets.append((AssetType.COLD_BOX, self.cold_box_identification))
        if self.cold_plate_id is not None:
            assets.append((AssetType.COLD_PLATE, self.cold_plate_identification))
        if self.tricycle_id is not None:
            assets.append((AssetType.TRICYCLE, self.tricycle_plate_number))
        return assets
