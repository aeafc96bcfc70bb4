# designs.py
import logging
import math
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from .store import OrderStore, get_order_store

# --- Module-level Configuration ---
logger = logging.getLogger(__name__)
router = APIRouter(prefix="/designs", tags=["Designs"])


# ===================================================================
# Pydantic Schemas for API Contracts
# ===================================================================

class DesignResponse(BaseModel):
    """Standard response model for a generated design."""
    id: int
    prompt: str
    image_url: str
    no_background_url: Optional[str]
    has_removed_background: bool
    customer_id: Optional[int]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class Pagination(BaseModel):
    currentPage: int
    pageSize: int
    totalItems: int
    totalPages: int


class RecentDesignsResponse(BaseModel):
    designs: List[DesignResponse]
    pagination: Pagination


class PurchasedDesignsResponse(BaseModel):
    designs: List[str]


# ===================================================================
# API Endpoints
# ===================================================================

@router.get("/recent", response_model=RecentDesignsResponse)
async def get_recent_designs(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    store: OrderStore = Depends(get_order_store),
):
    """All generated designs, newest first, regardless of purchase status."""
    images, total = await store.recent_images(page, limit)
    logger.info(f"Returning {len(images)} designs for page {page} ({total} total)")
    return RecentDesignsResponse(
        designs=[DesignResponse.model_validate(image) for image in images],
        pagination=Pagination(
            currentPage=page,
            pageSize=limit,
            totalItems=total,
            totalPages=math.ceil(total / limit),
        ),
    )


@router.get("/purchased", response_model=PurchasedDesignsResponse)
async def get_purchased_designs(
    email: str = Query(..., min_length=3),
    store: OrderStore = Depends(get_order_store),
):
    """Image URLs the customer with `email` has ordered, without duplicates."""
    urls = await store.purchased_image_urls(email.strip().lower())
    return PurchasedDesignsResponse(designs=urls)
