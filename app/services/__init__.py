"""Application services (validation of extracted booking data)."""
from app.services.validation import validate_customer_profile, validate_party_size, validate_travel_dates

__all__ = ["validate_customer_profile", "validate_party_size", "validate_travel_dates"]
