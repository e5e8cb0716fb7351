# Services package init
"""
ScholarStream Backend - Services Layer
========================================

What:  Business logic between the routes (HTTP) and the database.
How:   Stateless service objects; each call receives the request's session and
       the authenticated ``Actor``. Routes never query the database directly.

Service Inventory:
    - identity:            bearer token → Actor; role dependencies
    - authorization:       pure allow/deny policy with deny reasons
    - application_store:   data access and conditional single-row updates
    - lifecycle:           application status/payment state machine
    - payment_provider:    abstract payment processor interface
    - stripe_service:      Stripe implementation (retry + circuit breaker)
    - payment_reconciler:  intent/checkout/webhook → paid, exactly once
    - review_service:      reviews gated on completed applications
    - user_service:        profile and role updates
"""
