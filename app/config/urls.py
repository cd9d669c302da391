"""
Root URL configuration.

URL Structure:
    /                              - ReDoc API documentation
    /schema/                       - OpenAPI schema
    /admin/                        - Django admin (read-only settlement audit)
    /health/                       - Health check endpoint
    /api/v1/auth/token/            - Obtain JWT pair (simplejwt)
    /api/v1/auth/token/refresh/    - Refresh JWT access token
    /api/v1/settlements/           - Settlement endpoints
        transactions/              - Transaction list/create
        transactions/stats/        - Seller statistics
        transactions/{id}/         - Transaction detail
        transactions/{id}/timeline/ - Status history
        transactions/{id}/pay/     - Start payment
        transactions/{id}/cancel/  - Cancel before escrow
        transactions/{id}/transition/ - Staff status change
        transactions/{id}/release/ - Release escrow
        transactions/{id}/dispute/ - Open dispute
        transactions/{id}/evidence/ - Add dispute evidence
        transactions/{id}/resolve-dispute/ - Resolve dispute (staff)
        transactions/{id}/refund/  - Refund buyer (staff)
        transactions/{id}/terms/   - Renegotiate price or method
        webhooks/stripe/           - Stripe payment events
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from core.views import health_check

# =============================================================================
# API v1 Routes
# =============================================================================
api_v1_patterns = [
    path("auth/token/", TokenObtainPairView.as_view(), name="token_obtain_pair"),
    path("auth/token/refresh/", TokenRefreshView.as_view(), name="token_refresh"),
    path("settlements/", include("settlements.urls")),
]

urlpatterns = [
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    path("admin/", admin.site.urls),
    path("health/", health_check, name="health_check"),
    path("api/v1/", include(api_v1_patterns)),
]

# =============================================================================
# Admin Site Customization
# =============================================================================
admin.site.site_header = "Settlements Admin"
admin.site.site_title = "Settlements"
admin.site.index_title = "Escrow transactions"
