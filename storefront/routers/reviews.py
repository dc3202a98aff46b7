from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from ..core.dependencies import get_db, require_admin
from ..enums import ReviewStatus
from ..exceptions import raise_for_result
from ..schemas.review import ProductReviews, ReviewCreate, ReviewResponse, ReviewStatusUpdate
from ..services.review_service import ReviewService

router = APIRouter()
admin_router = APIRouter(dependencies=[Depends(require_admin)])
review_service = ReviewService()


@router.post("/", response_model=ReviewResponse, status_code=201)
async def create_review(data: ReviewCreate, db: AsyncSession = Depends(get_db)):
    """
    **Create New Review**

    Submit a review for a product. Reviews stay hidden until approved.

    **Request Body:**
    - **product_id**: ID of the product to review (required)
    - **guest_name** / **guest_email**: Who is reviewing (required)
    - **rating**: Rating from 1-5 stars (required)
    - **title**: Review title (optional)
    - **comment**: Review comment/description (optional)
    """
    return raise_for_result(await review_service.create_review(data, db))


@router.get("/product/{product_id}", response_model=ProductReviews)
async def get_product_reviews(product_id: int, db: AsyncSession = Depends(get_db)):
    """Approved reviews of a product with its average rating"""
    return raise_for_result(await review_service.get_product_reviews(product_id, db))


@admin_router.get("/", response_model=List[ReviewResponse])
async def list_reviews(
    status: Optional[ReviewStatus] = Query(None),
    db: AsyncSession = Depends(get_db)
):
    return raise_for_result(await review_service.list_reviews(db, status))


@admin_router.patch("/{review_id}/status", response_model=ReviewResponse)
async def update_review_status(
    review_id: int,
    data: ReviewStatusUpdate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db)
):
    """Approve or reject a review; approval emails the reviewer"""
    return raise_for_result(await review_service.update_review_status(review_id, data.status, db, background_tasks))


@admin_router.delete("/{review_id}", status_code=204)
async def delete_review(review_id: int, db: AsyncSession = Depends(get_db)):
    raise_for_result(await review_service.delete_review(review_id, db))
