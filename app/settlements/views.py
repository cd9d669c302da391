"""
ViewSet for the settlements API.

URL Structure:
    /api/v1/settlements/transactions/                       GET, POST
    /api/v1/settlements/transactions/stats/                 GET
    /api/v1/settlements/transactions/{id}/                  GET
    /api/v1/settlements/transactions/{id}/timeline/         GET
    /api/v1/settlements/transactions/{id}/pay/              POST
    /api/v1/settlements/transactions/{id}/terms/            POST
    /api/v1/settlements/transactions/{id}/cancel/           POST
    /api/v1/settlements/transactions/{id}/transition/       POST (staff)
    /api/v1/settlements/transactions/{id}/release/          POST
    /api/v1/settlements/transactions/{id}/dispute/          POST
    /api/v1/settlements/transactions/{id}/evidence/         POST
    /api/v1/settlements/transactions/{id}/resolve-dispute/  POST (staff)
    /api/v1/settlements/transactions/{id}/refund/           POST (staff)

Design Decisions:
    - Views only parse input and call services; no state change happens here
    - Domain errors (BaseApplicationError) map to HTTP codes in error_response()
    - Non-parties get 404 for a transaction, not 403
"""

from __future__ import annotations

import logging

from django.db.models import Q
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import (
    OpenApiParameter,
    OpenApiResponse,
    extend_schema,
    extend_schema_view,
)
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from settlements.exceptions import GatewayError
from settlements.ledger import TransactionLedger
from settlements.models import Transaction
from settlements.permissions import IsTransactionBuyerOrStaff, IsTransactionParty
from settlements.serializers import (
    CancelRequestSerializer,
    DisputeCreateSerializer,
    DisputeResolveSerializer,
    EvidenceSerializer,
    RefundRequestSerializer,
    ReleaseRequestSerializer,
    SellerStatsQuerySerializer,
    TermsUpdateSerializer,
    TimelineEntrySerializer,
    TransactionCreateSerializer,
    TransactionListSerializer,
    TransactionSerializer,
    TransitionRequestSerializer,
)
from settlements.services import (
    DisputeService,
    EscrowReleaseService,
    RefundService,
    SettlementService,
    TransitionManager,
)

logger = logging.getLogger(__name__)

TAGS = ["Settlements"]


def error_response(error: BaseApplicationError) -> Response:
    """
    Translate a domain error into an API response.

    Status mapping:
        ValidationError -> 400
        PermissionDeniedError -> 403
        NotFoundError -> 404
        ConflictError (stale version, illegal transition) -> 409
        GatewayError -> 503 when retryable, else 502
    """
    if isinstance(error, ValidationError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(error, PermissionDeniedError):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(error, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, ConflictError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(error, GatewayError):
        code = (
            status.HTTP_503_SERVICE_UNAVAILABLE
            if error.is_retryable
            else status.HTTP_502_BAD_GATEWAY
        )
    else:
        logger.error(f"Unmapped application error: {error!r}")
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return Response(error.to_dict(), status=code)


@extend_schema_view(
    list=extend_schema(
        operation_id="list_transactions",
        summary="List my transactions",
        tags=TAGS,
    ),
    retrieve=extend_schema(
        operation_id="get_transaction",
        summary="Get transaction",
        tags=TAGS,
    ),
)
class TransactionViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    """
    Escrow transactions between a buyer and a seller.

    list:
        Transactions where the current user is buyer or seller.

    create:
        Start a purchase of a listing. The current user is the buyer.

    terms:
        Buyer or seller renegotiates a pending purchase.

    transition:
        Staff-only raw status change with an expected version.

    release:
        Buyer confirms receipt (or staff releases) before the hold ends.
        The payout is queued; outcome is "disbursement_pending" until a
        worker pays the seller.

    dispute / evidence:
        Parties open a dispute and attach evidence.

    resolve_dispute / refund:
        Staff decisions.
    """

    permission_classes = [IsAuthenticated]
    queryset = Transaction.objects.all()

    def get_queryset(self):
        user = self.request.user
        if not user.is_authenticated:
            return Transaction.objects.none()
        queryset = Transaction.objects.select_related("listing")
        if self.action == "list" or not user.is_staff:
            queryset = queryset.filter(Q(buyer=user) | Q(seller=user))
        return queryset.order_by("-created_at")

    def get_serializer_class(self):
        if self.action == "list":
            return TransactionListSerializer
        if self.action == "create":
            return TransactionCreateSerializer
        return TransactionSerializer

    def get_permissions(self):
        if self.action in ("transition", "resolve_dispute", "refund"):
            return [IsAuthenticated(), IsAdminUser()]
        if self.action in ("release", "pay"):
            return [IsAuthenticated(), IsTransactionBuyerOrStaff()]
        if self.action in (
            "retrieve", "timeline", "dispute", "evidence", "cancel", "terms"
        ):
            return [IsAuthenticated(), IsTransactionParty()]
        return [IsAuthenticated()]

    def _detail(self, txn: Transaction, code: int = status.HTTP_200_OK) -> Response:
        serializer = TransactionSerializer(txn, context={"request": self.request})
        return Response(serializer.data, status=code)

    # =========================================================================
    # Creation and Reads
    # =========================================================================

    @extend_schema(
        operation_id="create_transaction",
        summary="Create transaction",
        request=TransactionCreateSerializer,
        responses={
            201: TransactionSerializer,
            400: OpenApiResponse(description="Invalid listing, party or amount"),
        },
        tags=TAGS,
    )
    def create(self, request):
        serializer = TransactionCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        listing_id = data.pop("listing_id")

        try:
            txn = SettlementService.create_transaction(
                buyer=request.user,
                listing_id=listing_id,
                actor=request.user,
                **data,
            )
        except BaseApplicationError as e:
            return error_response(e)
        return self._detail(txn, status.HTTP_201_CREATED)

    @extend_schema(
        operation_id="get_transaction_timeline",
        summary="Get transaction timeline",
        responses={200: TimelineEntrySerializer(many=True)},
        tags=TAGS,
    )
    @action(detail=True, methods=["get"])
    def timeline(self, request, pk=None):
        txn = self.get_object()
        entries = TransactionLedger.timeline(txn.id)
        return Response(TimelineEntrySerializer(entries, many=True).data)

    @extend_schema(
        operation_id="get_seller_stats",
        summary="Seller statistics",
        parameters=[
            OpenApiParameter(
                name="period",
                type=OpenApiTypes.INT,
                location=OpenApiParameter.QUERY,
                description="Look-back window in days (default 30)",
            ),
        ],
        tags=TAGS,
    )
    @action(detail=False, methods=["get"])
    def stats(self, request):
        query = SellerStatsQuerySerializer(
            data={"period_days": request.query_params.get("period", 30)}
        )
        query.is_valid(raise_exception=True)
        try:
            stats = SettlementService.seller_stats(
                request.user, period_days=query.validated_data["period_days"]
            )
        except BaseApplicationError as e:
            return error_response(e)
        return Response(stats)

    # =========================================================================
    # Payment Leg
    # =========================================================================

    @extend_schema(
        operation_id="start_transaction_payment",
        summary="Start payment",
        request=None,
        tags=TAGS,
    )
    @action(detail=True, methods=["post"])
    def pay(self, request, pk=None):
        txn = self.get_object()
        try:
            txn, charge = SettlementService.start_payment(txn.id, actor=request.user)
        except BaseApplicationError as e:
            return error_response(e)
        return Response(
            {
                "transaction": TransactionSerializer(
                    txn, context={"request": request}
                ).data,
                "client_secret": charge.client_secret,
            }
        )

    @extend_schema(
        operation_id="update_transaction_terms",
        summary="Renegotiate price or payment method",
        request=TermsUpdateSerializer,
        responses={
            200: TransactionSerializer,
            409: OpenApiResponse(description="No longer pending or stale version"),
        },
        tags=TAGS,
    )
    @action(detail=True, methods=["post"])
    def terms(self, request, pk=None):
        txn = self.get_object()
        serializer = TermsUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            txn = SettlementService.update_terms(
                txn.id,
                actor=request.user,
                expected_version=data["expected_version"],
                amount_final=data.get("amount_final"),
                payment_method=data.get("payment_method"),
            )
        except BaseApplicationError as e:
            return error_response(e)
        return self._detail(txn)

    @extend_schema(
        operation_id="cancel_transaction",
        summary="Cancel transaction",
        request=None,
        tags=TAGS,
    )
    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):
        txn = self.get_object()
        serializer = CancelRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            txn = SettlementService.cancel_transaction(
                txn.id,
                actor=request.user,
                reason=serializer.validated_data["reason"],
                expected_version=serializer.validated_data.get("expected_version"),
            )
        except BaseApplicationError as e:
            return error_response(e)
        return self._detail(txn)

    # =========================================================================
    # Staff Transition
    # =========================================================================

    @extend_schema(
        operation_id="transition_transaction",
        summary="Change transaction status",
        request=TransitionRequestSerializer,
        responses={
            200: TransactionSerializer,
            409: OpenApiResponse(description="Illegal transition or stale version"),
        },
        tags=TAGS,
    )
    @action(detail=True, methods=["post"])
    def transition(self, request, pk=None):
        txn = self.get_object()
        serializer = TransitionRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            txn = TransitionManager.transition(
                txn.id,
                data["target_status"],
                actor=request.user,
                note=data["note"],
                expected_version=data["expected_version"],
            )
        except BaseApplicationError as e:
            return error_response(e)
        return self._detail(txn)

    # =========================================================================
    # Release
    # =========================================================================

    @extend_schema(
        operation_id="release_transaction",
        summary="Release escrow to seller",
        request=ReleaseRequestSerializer,
        tags=TAGS,
    )
    @action(detail=True, methods=["post"])
    def release(self, request, pk=None):
        txn = self.get_object()
        serializer = ReleaseRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            result = EscrowReleaseService.release(
                txn.id,
                actor=request.user,
                expected_version=serializer.validated_data.get("expected_version"),
                reason=serializer.validated_data["reason"],
            )
        except BaseApplicationError as e:
            return error_response(e)
        return Response(
            {
                "outcome": result.outcome,
                "payout_reference": result.payout_reference,
                "transaction": TransactionSerializer(
                    result.transaction, context={"request": request}
                ).data,
            }
        )

    # =========================================================================
    # Disputes
    # =========================================================================

    @extend_schema(
        operation_id="dispute_transaction",
        summary="Open a dispute",
        request=DisputeCreateSerializer,
        tags=TAGS,
    )
    @action(detail=True, methods=["post"])
    def dispute(self, request, pk=None):
        txn = self.get_object()
        serializer = DisputeCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            txn = DisputeService.initiate_dispute(
                txn.id,
                initiator=request.user,
                reason=data["reason"],
                description=data["description"],
                evidence=[dict(item) for item in data["evidence"]],
                expected_version=data.get("expected_version"),
            )
        except BaseApplicationError as e:
            return error_response(e)
        return self._detail(txn)

    @extend_schema(
        operation_id="add_dispute_evidence",
        summary="Add dispute evidence",
        request=EvidenceSerializer,
        tags=TAGS,
    )
    @action(detail=True, methods=["post"])
    def evidence(self, request, pk=None):
        txn = self.get_object()
        serializer = EvidenceSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            txn = DisputeService.add_evidence(
                txn.id,
                actor=request.user,
                type=serializer.validated_data["type"],
                url=serializer.validated_data["url"],
            )
        except BaseApplicationError as e:
            return error_response(e)
        return self._detail(txn)

    @extend_schema(
        operation_id="resolve_transaction_dispute",
        summary="Resolve a dispute",
        request=DisputeResolveSerializer,
        tags=TAGS,
    )
    @action(detail=True, methods=["post"], url_path="resolve-dispute")
    def resolve_dispute(self, request, pk=None):
        txn = self.get_object()
        serializer = DisputeResolveSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            txn = DisputeService.resolve_dispute(
                txn.id,
                resolver=request.user,
                resolution=data["resolution"],
                refund_amount=data.get("refund_amount"),
                outcome=data["outcome"],
                expected_version=data.get("expected_version"),
            )
        except BaseApplicationError as e:
            return error_response(e)
        return self._detail(txn)

    # =========================================================================
    # Refunds
    # =========================================================================

    @extend_schema(
        operation_id="refund_transaction",
        summary="Refund buyer",
        request=RefundRequestSerializer,
        tags=TAGS,
    )
    @action(detail=True, methods=["post"])
    def refund(self, request, pk=None):
        txn = self.get_object()
        serializer = RefundRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            txn = RefundService.process_refund(
                txn.id,
                refund_amount=data.get("refund_amount"),
                reason=data["reason"],
                actor=request.user,
                expected_version=data.get("expected_version"),
            )
        except BaseApplicationError as e:
            return error_response(e)
        return self._detail(txn)
