import logging
from decimal import Decimal
from typing import List, Optional

from fastapi import BackgroundTasks
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from ..enums import ErrorCode, ReviewStatus
from ..models import Product, Review
from ..models.base import utcnow
from ..schemas.common import ServiceResult
from ..schemas.review import ProductReviews, ReviewCreate, ReviewResponse
from .email_service import EmailService


logger = logging.getLogger(__name__)


class ReviewService:
    def __init__(self, email_service: Optional[EmailService] = None):
        self.email_service = email_service or EmailService()

    async def create_review(self, data: ReviewCreate, db: AsyncSession) -> ServiceResult[ReviewResponse]:
        """Stores a guest review awaiting moderation"""
        product = await db.get(Product, data.product_id)
        if not product or product.is_deleted:
            return ServiceResult.failure(ErrorCode.PRODUCT_NOT_FOUND, "Product not found.")

        if not data.guest_name:
            return ServiceResult.failure(ErrorCode.INVALID_INPUT, "Name is required.")

        review = Review(
            product_id=data.product_id,
            guest_name=data.guest_name,
            guest_email=data.guest_email,
            rating=data.rating,
            title=data.title or None,
            comment=data.comment or None,
            status=ReviewStatus.PENDING,
        )
        db.add(review)
        await db.commit()
        await db.refresh(review)

        logger.info("Review %s submitted for product %s", review.id, review.product_id)
        return ServiceResult.success(ReviewResponse.model_validate(review))

    async def update_review_status(
        self,
        review_id: int,
        status: ReviewStatus,
        db: AsyncSession,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> ServiceResult[ReviewResponse]:
        review = await db.get(Review, review_id)
        if not review or review.is_deleted:
            return ServiceResult.failure(ErrorCode.REVIEW_NOT_FOUND, "Review not found.")

        if review.status == status:
            return ServiceResult.success(ReviewResponse.model_validate(review))

        review.status = status
        review.approved_at = utcnow() if status == ReviewStatus.APPROVED else None
        await db.commit()
        await db.refresh(review)

        if status == ReviewStatus.APPROVED and background_tasks is not None:
            product = await db.get(Product, review.product_id)
            background_tasks.add_task(self.email_service.send_review_approved, review, product.name)

        return ServiceResult.success(ReviewResponse.model_validate(review))

    async def get_product_reviews(self, product_id: int, db: AsyncSession) -> ServiceResult[ProductReviews]:
        """Approved reviews of a product, newest first, with their average rating"""
        product = await db.get(Product, product_id)
        if not product or product.is_deleted:
            return ServiceResult.failure(ErrorCode.PRODUCT_NOT_FOUND, "Product not found.")

        query = (
            select(Review)
            .where(
                Review.product_id == product_id,
                Review.status == ReviewStatus.APPROVED,
                Review.is_deleted.is_(False),
            )
            .order_by(Review.created_at.desc(), Review.id.desc())
        )
        reviews = (await db.execute(query)).scalars().all()

        average = Decimal("0.00")
        if reviews:
            average = (Decimal(sum(r.rating for r in reviews)) / len(reviews)).quantize(Decimal("0.1"))

        return ServiceResult.success(ProductReviews(
            product_id=product_id,
            average_rating=average,
            review_count=len(reviews),
            reviews=[ReviewResponse.model_validate(r) for r in reviews],
        ))

    async def list_reviews(self, db: AsyncSession, status: Optional[ReviewStatus] = None) -> ServiceResult[List[ReviewResponse]]:
        query = select(Review).where(Review.is_deleted.is_(False)).order_by(Review.created_at.desc(), Review.id.desc())
        if status is not None:
            query = query.where(Review.status == status)
        reviews = (await db.execute(query)).scalars().all()
        return ServiceResult.success([ReviewResponse.model_validate(r) for r in reviews])

    async def delete_review(self, review_id: int, db: AsyncSession) -> ServiceResult[None]:
        review = await db.get(Review, review_id)
        if not review or review.is_deleted:
            return ServiceResult.failure(ErrorCode.REVIEW_NOT_FOUND, "Review not found.")

        review.is_deleted = True
        await db.commit()
        return ServiceResult.success()
