"""HTTP surface for crmflow (FastAPI)."""
