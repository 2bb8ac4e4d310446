"""API endpoints for loyalty tiers, points, rewards and offers."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tillpoint_api.api.dependencies.security import require_integration_api_key
from tillpoint_api.api.dependencies.tenant import (
    StaffRole,
    optional_staff_role,
    require_roles,
    require_staff,
    require_tenant,
)
from tillpoint_api.db.session import get_session, get_session_factory
from tillpoint_api.jobs.loyalty.birthday import run_birthday_bonuses
from tillpoint_api.models.customer import LoyaltyTierLevel
from tillpoint_api.models.loyalty import (
    LoyaltyOffer,
    LoyaltyOfferType,
    LoyaltyReward,
    PointsTransaction,
    PointsTransactionType,
    RewardType,
)
from tillpoint_api.models.tenant import Tenant
from tillpoint_api.observability.loyalty import get_loyalty_store
from tillpoint_api.observability.scheduler import get_loyalty_scheduler_store
from tillpoint_api.services.loyalty import (
    AwardEngine,
    ConcurrencyConflictError,
    CustomerNotFoundError,
    InsufficientPointsError,
    InvalidTransactionTypeError,
    LoyaltyAnalyticsService,
    LoyaltyLedger,
    LoyaltyService,
    OfferAudience,
    OfferNotFoundError,
    RedemptionEngine,
    TierRule,
    run_ledger_transaction,
)


router = APIRouter(prefix="/loyalty", tags=["loyalty"])

_ADMIN_ONLY = require_roles(StaffRole.ADMIN)
_ADMIN_OR_MANAGER = require_roles(StaffRole.ADMIN, StaffRole.MANAGER)


class TierResponse(BaseModel):
    tier: LoyaltyTierLevel
    minimumLifetimePoints: int
    pointsMultiplier: float
    discountPercentage: float
    birthdayBonus: int
    description: Optional[str]


class TierConfigRequest(BaseModel):
    minimumLifetimePoints: int = Field(..., ge=0)
    pointsMultiplier: Decimal = Field(..., gt=0)
    discountPercentage: Decimal = Field(Decimal("0"), ge=0, le=100)
    birthdayBonus: int = Field(0, ge=0)
    description: Optional[str] = None


class AwardRequest(BaseModel):
    customerId: UUID
    saleAmount: Decimal = Field(..., ge=0, description="Completed sale total in tenant currency")
    saleId: Optional[str] = Field(None, description="POS sale reference stored on the ledger entry")


class AwardResponse(BaseModel):
    pointsAwarded: int
    basePoints: int
    bonusPoints: int
    newBalance: int
    tier: LoyaltyTierLevel
    transactionId: Optional[UUID]


class RedemptionRequest(BaseModel):
    customerId: UUID
    points: int = Field(..., gt=0)
    rewardType: RewardType
    rewardValue: Decimal = Field(..., ge=0)
    description: Optional[str] = None
    expiresAt: Optional[datetime] = None


class RewardResponse(BaseModel):
    id: UUID
    customerId: UUID
    transactionId: UUID
    rewardType: RewardType
    rewardValue: float
    pointsCost: int
    description: Optional[str]
    redeemedAt: datetime
    expiresAt: Optional[datetime]


class RedemptionResponse(BaseModel):
    reward: RewardResponse
    newBalance: int


class AdjustmentRequest(BaseModel):
    points: int = Field(..., description="Signed correction; never zero")
    reason: str = Field(..., min_length=1)

    @model_validator(mode="after")
    def _non_zero(self) -> "AdjustmentRequest":
        if self.points == 0:
            raise ValueError("points must be non-zero")
        return self


class TransactionResponse(BaseModel):
    id: UUID
    type: PointsTransactionType
    points: int
    balanceAfter: int
    sequence: int
    relatedSaleId: Optional[str]
    description: str
    metadata: Optional[dict[str, Any]]
    createdAt: datetime


class AdjustmentResponse(BaseModel):
    transaction: TransactionResponse
    newBalance: int
    tier: LoyaltyTierLevel


class TransactionPage(BaseModel):
    transactions: List[TransactionResponse]
    nextBeforeSequence: Optional[int]


class OfferResponse(BaseModel):
    id: UUID
    title: str
    description: Optional[str]
    offerType: LoyaltyOfferType
    discountValue: float
    minimumPurchase: Optional[float]
    requiredTier: LoyaltyTierLevel
    startDate: datetime
    endDate: datetime
    isActive: bool


class OfferCreateRequest(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    offerType: LoyaltyOfferType
    discountValue: Decimal = Field(..., ge=0)
    minimumPurchase: Optional[Decimal] = Field(None, ge=0)
    requiredTier: LoyaltyTierLevel = LoyaltyTierLevel.BRONZE
    startDate: datetime
    endDate: datetime
    isActive: bool = True


class OfferUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    offerType: Optional[LoyaltyOfferType] = None
    discountValue: Optional[Decimal] = Field(None, ge=0)
    minimumPurchase: Optional[Decimal] = Field(None, ge=0)
    requiredTier: Optional[LoyaltyTierLevel] = None
    startDate: Optional[datetime] = None
    endDate: Optional[datetime] = None
    isActive: Optional[bool] = None


class StatusResponse(BaseModel):
    customerId: UUID
    currentBalance: int
    lifetimePoints: int
    tier: TierResponse
    nextTier: Optional[LoyaltyTierLevel]
    pointsToNextTier: Optional[int]
    progressToNextTier: float
    recentTransactions: List[TransactionResponse]
    activeRewards: List[RewardResponse]
    availableOffers: List[OfferResponse]


class BirthdayRunRequest(BaseModel):
    day: Optional[date] = Field(None, description="Override the tenant-local date")


class BirthdayRunResponse(BaseModel):
    awardedCount: int
    skippedCount: int
    failedCount: int
    results: List[dict[str, Any]]


class CustomerSummary(BaseModel):
    id: UUID
    name: str
    tier: LoyaltyTierLevel
    currentBalance: int
    lifetimePoints: int


class StatisticsResponse(BaseModel):
    customersByTier: dict[str, int]
    pointsIssued: int
    pointsRedeemed: int
    activeOffers: int
    recentRedemptions: List[RewardResponse]
    topCustomers: List[CustomerSummary]


_OFFER_FIELD_NAMES = {
    "title": "title",
    "description": "description",
    "offerType": "offer_type",
    "discountValue": "discount_value",
    "minimumPurchase": "minimum_purchase",
    "requiredTier": "required_tier",
    "startDate": "start_date",
    "endDate": "end_date",
    "isActive": "is_active",
}


def _tier_response(rule: TierRule) -> TierResponse:
    return TierResponse(
        tier=rule.tier,
        minimumLifetimePoints=rule.minimum_lifetime_points,
        pointsMultiplier=float(rule.points_multiplier),
        discountPercentage=float(rule.discount_percentage),
        birthdayBonus=rule.birthday_bonus,
        description=rule.description,
    )


def _transaction_response(entry: PointsTransaction) -> TransactionResponse:
    return TransactionResponse(
        id=entry.id,
        type=entry.transaction_type,
        points=entry.points,
        balanceAfter=entry.balance_after,
        sequence=entry.sequence,
        relatedSaleId=entry.related_sale_id,
        description=entry.description,
        metadata=entry.metadata_json,
        createdAt=entry.created_at,
    )


def _reward_response(reward: LoyaltyReward) -> RewardResponse:
    return RewardResponse(
        id=reward.id,
        customerId=reward.customer_id,
        transactionId=reward.transaction_id,
        rewardType=reward.reward_type,
        rewardValue=float(reward.reward_value),
        pointsCost=reward.points_cost,
        description=reward.description,
        redeemedAt=reward.redeemed_at,
        expiresAt=reward.expires_at,
    )


def _offer_response(offer: LoyaltyOffer) -> OfferResponse:
    return OfferResponse(
        id=offer.id,
        title=offer.title,
        description=offer.description,
        offerType=offer.offer_type,
        discountValue=float(offer.discount_value),
        minimumPurchase=float(offer.minimum_purchase) if offer.minimum_purchase is not None else None,
        requiredTier=offer.required_tier,
        startDate=offer.start_date,
        endDate=offer.end_date,
        isActive=offer.is_active,
    )


def _translate_error(error: Exception) -> HTTPException:
    if isinstance(error, CustomerNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Customer not found")
    if isinstance(error, OfferNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Offer not found")
    if isinstance(error, InsufficientPointsError):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "code": "insufficient_points",
                "available": error.available,
                "requested": error.requested,
                "shortfall": error.shortfall,
            },
        )
    if isinstance(error, ConcurrencyConflictError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Loyalty ledger busy; retry the request",
            headers={"Retry-After": "1"},
        )
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))


_HANDLED_ERRORS = (
    CustomerNotFoundError,
    OfferNotFoundError,
    InsufficientPointsError,
    ConcurrencyConflictError,
    InvalidTransactionTypeError,
    ValueError,
)


@router.get("/tiers", response_model=list[TierResponse])
async def list_tiers(
    tenant: Tenant = Depends(require_tenant),
    db: AsyncSession = Depends(get_session),
) -> list[TierResponse]:
    service = LoyaltyService(db)
    return [_tier_response(rule) for rule in await service.list_tiers(tenant.id)]


@router.put("/tiers/{tier}", response_model=TierResponse)
async def upsert_tier(
    tier: LoyaltyTierLevel,
    payload: TierConfigRequest,
    tenant: Tenant = Depends(require_tenant),
    _: StaffRole = Depends(_ADMIN_ONLY),
    db: AsyncSession = Depends(get_session),
) -> TierResponse:
    service = LoyaltyService(db)
    try:
        await service.upsert_tier_config(
            tenant.id,
            tier,
            minimum_lifetime_points=payload.minimumLifetimePoints,
            points_multiplier=payload.pointsMultiplier,
            discount_percentage=payload.discountPercentage,
            birthday_bonus=payload.birthdayBonus,
            description=payload.description,
        )
    except ValueError as error:
        raise _translate_error(error) from error
    await db.commit()

    rules = await LoyaltyService(db).list_tiers(tenant.id)
    return next(_tier_response(rule) for rule in rules if rule.tier == tier)


@router.post("/awards", response_model=AwardResponse)
async def award_points(
    payload: AwardRequest,
    tenant: Tenant = Depends(require_tenant),
    _: None = Depends(require_integration_api_key),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> AwardResponse:
    engine = AwardEngine(session_factory)
    try:
        result = await engine.award_for_sale(
            payload.customerId,
            tenant.id,
            payload.saleAmount,
            related_sale_id=payload.saleId,
        )
    except _HANDLED_ERRORS as error:
        raise _translate_error(error) from error

    return AwardResponse(
        pointsAwarded=result.points_awarded,
        basePoints=result.base_points,
        bonusPoints=result.bonus_points,
        newBalance=result.new_balance,
        tier=result.new_tier,
        transactionId=result.transaction_id,
    )


@router.post("/redemptions", response_model=RedemptionResponse, status_code=status.HTTP_201_CREATED)
async def redeem_points(
    payload: RedemptionRequest,
    tenant: Tenant = Depends(require_tenant),
    _: StaffRole = Depends(require_staff),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> RedemptionResponse:
    engine = RedemptionEngine(session_factory)
    try:
        result = await engine.redeem(
            payload.customerId,
            tenant.id,
            payload.points,
            payload.rewardType,
            payload.rewardValue,
            payload.description,
            expires_at=payload.expiresAt,
        )
    except _HANDLED_ERRORS as error:
        raise _translate_error(error) from error

    return RedemptionResponse(reward=_reward_response(result.reward), newBalance=result.new_balance)


@router.post(
    "/customers/{customer_id}/adjustments",
    response_model=AdjustmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def adjust_points(
    customer_id: UUID,
    payload: AdjustmentRequest,
    tenant: Tenant = Depends(require_tenant),
    role: StaffRole = Depends(_ADMIN_ONLY),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> AdjustmentResponse:
    async def _adjust(session: AsyncSession):
        ledger = LoyaltyLedger(session)
        return await ledger.adjust(
            customer_id,
            tenant.id,
            payload.points,
            payload.reason,
            metadata={"adjusted_by_role": role.value},
        )

    try:
        result = await run_ledger_transaction(session_factory, _adjust, label="adjustment")
    except _HANDLED_ERRORS as error:
        raise _translate_error(error) from error

    return AdjustmentResponse(
        transaction=_transaction_response(result.transaction),
        newBalance=result.new_balance,
        tier=result.new_tier,
    )


@router.get("/customers/{customer_id}/transactions", response_model=TransactionPage)
async def list_transactions(
    customer_id: UUID,
    limit: int = Query(50, ge=1, le=200),
    before_sequence: Optional[int] = Query(None, alias="beforeSequence", ge=1),
    types: Optional[List[PointsTransactionType]] = Query(None, alias="type"),
    tenant: Tenant = Depends(require_tenant),
    _: StaffRole = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
) -> TransactionPage:
    service = LoyaltyService(db)
    try:
        entries = await service.list_transactions(
            customer_id,
            tenant.id,
            limit=limit + 1,
            before_sequence=before_sequence,
            types=types,
        )
    except CustomerNotFoundError as error:
        raise _translate_error(error) from error

    page = entries[:limit]
    next_cursor = page[-1].sequence if len(entries) > limit and page else None
    return TransactionPage(
        transactions=[_transaction_response(entry) for entry in page],
        nextBeforeSequence=next_cursor,
    )


@router.get("/customers/{customer_id}/rewards", response_model=list[RewardResponse])
async def list_active_rewards(
    customer_id: UUID,
    tenant: Tenant = Depends(require_tenant),
    _: StaffRole = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
) -> list[RewardResponse]:
    service = LoyaltyService(db)
    try:
        rewards = await service.list_active_rewards(customer_id, tenant.id)
    except CustomerNotFoundError as error:
        raise _translate_error(error) from error
    return [_reward_response(reward) for reward in rewards]


@router.get("/customers/{customer_id}/status", response_model=StatusResponse)
async def customer_status(
    customer_id: UUID,
    tenant: Tenant = Depends(require_tenant),
    _: StaffRole = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
) -> StatusResponse:
    service = LoyaltyService(db)
    try:
        snapshot = await service.snapshot_customer(customer_id, tenant.id)
    except CustomerNotFoundError as error:
        raise _translate_error(error) from error

    return StatusResponse(
        customerId=snapshot.customer_id,
        currentBalance=snapshot.current_balance,
        lifetimePoints=snapshot.lifetime_points,
        tier=_tier_response(snapshot.tier_rule),
        nextTier=snapshot.next_tier,
        pointsToNextTier=snapshot.points_to_next_tier,
        progressToNextTier=snapshot.progress_to_next_tier,
        recentTransactions=[_transaction_response(entry) for entry in snapshot.recent_transactions],
        activeRewards=[_reward_response(reward) for reward in snapshot.active_rewards],
        availableOffers=[_offer_response(offer) for offer in snapshot.available_offers],
    )


@router.get("/offers", response_model=list[OfferResponse])
async def list_offers(
    customer_id: Optional[UUID] = Query(None, alias="customerId"),
    tenant: Tenant = Depends(require_tenant),
    role: StaffRole | None = Depends(optional_staff_role),
    db: AsyncSession = Depends(get_session),
) -> list[OfferResponse]:
    service = LoyaltyService(db)
    try:
        if customer_id is not None:
            audience = await service.audience_for_customer(customer_id, tenant.id)
        elif role in (StaffRole.ADMIN, StaffRole.MANAGER):
            audience = OfferAudience.admin()
        else:
            audience = OfferAudience.for_tier(None)
    except CustomerNotFoundError as error:
        raise _translate_error(error) from error

    offers = await service.list_offers(tenant.id, audience, now=datetime.now(timezone.utc))
    return [_offer_response(offer) for offer in offers]


@router.post("/offers", response_model=OfferResponse, status_code=status.HTTP_201_CREATED)
async def create_offer(
    payload: OfferCreateRequest,
    tenant: Tenant = Depends(require_tenant),
    _: StaffRole = Depends(_ADMIN_OR_MANAGER),
    db: AsyncSession = Depends(get_session),
) -> OfferResponse:
    service = LoyaltyService(db)
    try:
        offer = await service.create_offer(
            tenant.id,
            title=payload.title,
            description=payload.description,
            offer_type=payload.offerType,
            discount_value=payload.discountValue,
            minimum_purchase=payload.minimumPurchase,
            required_tier=payload.requiredTier,
            start_date=payload.startDate,
            end_date=payload.endDate,
            is_active=payload.isActive,
        )
    except ValueError as error:
        raise _translate_error(error) from error
    await db.commit()
    return _offer_response(offer)


@router.patch("/offers/{offer_id}", response_model=OfferResponse)
async def update_offer(
    offer_id: UUID,
    payload: OfferUpdateRequest,
    tenant: Tenant = Depends(require_tenant),
    _: StaffRole = Depends(_ADMIN_OR_MANAGER),
    db: AsyncSession = Depends(get_session),
) -> OfferResponse:
    changes = {
        _OFFER_FIELD_NAMES[key]: value for key, value in payload.model_dump(exclude_unset=True).items()
    }
    service = LoyaltyService(db)
    try:
        offer = await service.update_offer(tenant.id, offer_id, changes)
    except (OfferNotFoundError, ValueError) as error:
        await db.rollback()
        raise _translate_error(error) from error
    await db.commit()
    return _offer_response(offer)


@router.delete("/offers/{offer_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_offer(
    offer_id: UUID,
    tenant: Tenant = Depends(require_tenant),
    _: StaffRole = Depends(_ADMIN_ONLY),
    db: AsyncSession = Depends(get_session),
) -> Response:
    service = LoyaltyService(db)
    try:
        await service.delete_offer(tenant.id, offer_id)
    except OfferNotFoundError as error:
        raise _translate_error(error) from error
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/birthday-bonuses/run", response_model=BirthdayRunResponse)
async def trigger_birthday_bonuses(
    payload: BirthdayRunRequest | None = None,
    tenant: Tenant = Depends(require_tenant),
    _: StaffRole = Depends(_ADMIN_ONLY),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> BirthdayRunResponse:
    summary = await run_birthday_bonuses(
        session_factory=session_factory,
        tenant_id=tenant.id,
        today=payload.day if payload else None,
    )
    return BirthdayRunResponse(
        awardedCount=summary["awarded_count"],
        skippedCount=summary["skipped_count"],
        failedCount=summary["failed_count"],
        results=summary["results"],
    )


@router.get("/statistics", response_model=StatisticsResponse)
async def program_statistics(
    tenant: Tenant = Depends(require_tenant),
    _: StaffRole = Depends(_ADMIN_OR_MANAGER),
    db: AsyncSession = Depends(get_session),
) -> StatisticsResponse:
    stats = await LoyaltyAnalyticsService(db).program_statistics(tenant.id)
    return StatisticsResponse(
        customersByTier=stats.customers_by_tier,
        pointsIssued=stats.points_issued,
        pointsRedeemed=stats.points_redeemed,
        activeOffers=stats.active_offers,
        recentRedemptions=[_reward_response(reward) for reward in stats.recent_rewards],
        topCustomers=[
            CustomerSummary(
                id=customer.id,
                name=customer.name,
                tier=customer.tier,
                currentBalance=customer.current_balance,
                lifetimePoints=customer.lifetime_points,
            )
            for customer in stats.top_customers
        ],
    )


@router.get("/observability")
async def loyalty_observability(_: StaffRole = Depends(_ADMIN_OR_MANAGER)) -> dict[str, Any]:
    return {
        "loyalty": get_loyalty_store().snapshot().as_dict(),
        "scheduler": get_loyalty_scheduler_store().snapshot().as_dict(),
    }


class BalanceDriftResponse(BaseModel):
    customerId: UUID
    currentBalance: int
    ledgerBalance: int
    difference: int


@router.get("/reconciliation", response_model=list[BalanceDriftResponse])
async def balance_reconciliation(
    tenant: Tenant = Depends(require_tenant),
    _: StaffRole = Depends(_ADMIN_ONLY),
    db: AsyncSession = Depends(get_session),
) -> list[BalanceDriftResponse]:
    drift = await LoyaltyAnalyticsService(db).find_balance_drift(tenant.id)
    return [
        BalanceDriftResponse(
            customerId=item.customer_id,
            currentBalance=item.current_balance,
            ledgerBalance=item.ledger_balance,
            difference=item.difference,
        )
        for item in drift
    ]
