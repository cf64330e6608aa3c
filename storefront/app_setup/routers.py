"""
Registre central des routers.
- Paiements: chemins historiques à la racine + alias /api/v1/payments, admin Stripe
- Coupons, droits d'accès (API v1)
- Health
"""
from fastapi import FastAPI
from storefront.payments import views as payments_views
from storefront.coupons import views as coupons_views
from storefront.purchases import views as purchases_views
from storefront.health.router import router as health_router

def register_routers(app: FastAPI) -> None:
    # Paiements
    app.include_router(payments_views.router)
    app.include_router(payments_views.api_router)
    app.include_router(payments_views.admin_router)
    # API v1
    app.include_router(coupons_views.router)
    app.include_router(purchases_views.router)
    # Health & monitoring
    app.include_router(health_router)
