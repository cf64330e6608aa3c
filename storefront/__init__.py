"""
Backend du storefront d'examens: checkout Stripe, coupons, réconciliation des achats.
"""
