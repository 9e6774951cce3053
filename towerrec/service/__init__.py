"""HTTP serving for a trained recommender (FastAPI)."""
