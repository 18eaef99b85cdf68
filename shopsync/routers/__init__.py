"""
routers/: FastAPI route modules.

Each file contains a thin APIRouter. All business logic
lives in services/. Routers validate input, call services,
and return responses.
"""
