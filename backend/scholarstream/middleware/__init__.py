# Middleware package init
"""
ScholarStream Backend - Middleware Package
============================================

Middleware Chain:
    Request → [Request ID] → [Logging] → [CORS] → Route Handler

    1. Request ID first, so every later log line can be correlated
    2. Logging records status, duration and the acting user once the
       response is known
    3. CORS is FastAPI's CORSMiddleware (handles preflight)
"""
