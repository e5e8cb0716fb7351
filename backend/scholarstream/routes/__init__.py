# Routes package init
"""
ScholarStream Backend - API Routes Package
============================================

Route Inventory:
    - applications.py:  /api/applications           (apply, list, moderate, pay, delete)
    - payment.py:       /api/payment                (intent, checkout, verify, webhook, status)
    - reviews.py:       /api/reviews                (create, list per scholarship)
    - users.py:         /api/users                  (me, profile, role)
    - health.py:        /health                     (service health check)

Routes stay thin: parse the request, call a service, shape the response.
Errors are raised as ScholarStreamError subclasses and converted by the
handlers registered in main.py.
"""
