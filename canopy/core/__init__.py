"""Core types shared by every Canopy stage: errors, models, request context."""
