"""
HTTP layer: FastAPI routers and error translation.
"""
