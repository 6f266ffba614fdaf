from .cart_validator import normalize_cart, validate_cart_data
from .ingestion_service import IngestionService
from .cart_resolver import CartResolver
from .visit_reader import VisitListingService, build_visit_reader
from .throttle_service import check_rate_limit

__all__ = [
    "normalize_cart",
    "validate_cart_data",
    "IngestionService",
    "CartResolver",
    "VisitListingService",
    "build_visit_reader",
    "check_rate_limit",
]
