# storefront/__init__.py
# ============================================================================
# STOREFRONT CHECKOUT SERVICE
# ============================================================================
# Stripe checkout sessions, signed webhooks and order reconciliation
# ============================================================================

__version__ = "1.0.0"
