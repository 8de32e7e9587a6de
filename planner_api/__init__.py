"""Itinerary acquisition service: Gemini generation plus best-effort imagery."""
