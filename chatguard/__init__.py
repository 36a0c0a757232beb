"""Role-aware rate limiting service for chat endpoints."""
