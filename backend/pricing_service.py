"""
Pricing engine for Love 4 Detailing.

Price = per-tier service price + distance surcharge beyond the free radius.
Pure computation over the service catalogue: nothing is written.
"""
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from config import Settings, get_settings
from db_models import VehicleSize, VEHICLE_SIZE_NAMES
from db_service import get_active_service, get_service_pricing
from distance_service import DistanceResolver, get_distance_resolver
from errors import NotFoundError, PricingNotConfiguredError
from models import PriceCalculation, service_operation

logger = logging.getLogger(__name__)


def calculate_distance_surcharge(
    distance_km: float,
    free_radius_km: float,
    surcharge_per_km: float,
) -> float:
    """
    Surcharge for travel beyond the free radius, rounded to pence.

    Args:
        distance_km: Travel distance from the base
        free_radius_km: Distance covered by the base price
        surcharge_per_km: Rate per km beyond the free radius

    Returns:
        0.0 inside the free radius, otherwise the rounded surcharge
    """
    if not distance_km or distance_km <= free_radius_km:
        return 0.0
    return round((distance_km - free_radius_km) * surcharge_per_km, 2)


class PricingService:
    """
    Price one or more services for a vehicle tier.

    The distance comes either precomputed or as a postcode resolved
    from the business base through the DistanceResolver.
    """

    def __init__(
        self,
        db: Session,
        settings: Settings = None,
        distance_resolver: DistanceResolver = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self._distance_resolver = distance_resolver

    @property
    def distance_resolver(self) -> DistanceResolver:
        if self._distance_resolver is None:
            self._distance_resolver = get_distance_resolver()
        return self._distance_resolver

    def calculate_distance_surcharge(self, distance_km: float) -> float:
        return calculate_distance_surcharge(
            distance_km,
            self.settings.free_radius_km,
            self.settings.surcharge_per_km,
        )

    def resolve_distance_km(self, distance_km: float = None, postcode: str = None) -> Optional[float]:
        """Use the given distance, else resolve the postcode (DistanceUnavailableError propagates)."""
        if distance_km is not None:
            return distance_km
        if postcode:
            return self.distance_resolver.distance_from_base(postcode).distance_km
        return None

    def calculate_service_price(
        self,
        service_id: int,
        vehicle_size: VehicleSize,
        distance_km: float = None,
        postcode: str = None,
    ) -> PriceCalculation:
        """
        Price a single service.

        Raises:
            NotFoundError: service missing or inactive
            PricingNotConfiguredError: no positive price for the tier
            DistanceUnavailableError: postcode given and no provider answered
        """
        service = get_active_service(self.db, service_id)
        if not service:
            raise NotFoundError(f"Service {service_id} not found")

        pricing = get_service_pricing(self.db, service_id)
        if not pricing:
            logger.error(f"Service pricing not found for service {service_id}")
            raise PricingNotConfiguredError(
                "Service pricing not configured", details={"service_id": service_id}
            )

        tier_price = getattr(pricing, vehicle_size.pricing_column)
        if tier_price is None or tier_price <= 0:
            raise PricingNotConfiguredError(
                f"No pricing found for vehicle size: {vehicle_size.display_name}",
                details={"service_id": service_id, "vehicle_size": vehicle_size.value},
            )

        distance_km = self.resolve_distance_km(distance_km, postcode)
        surcharge = self.calculate_distance_surcharge(distance_km)
        base_price = float(tier_price)
        total_price = round(base_price + surcharge, 2)

        return PriceCalculation(
            service_id=service.id,
            service_name=service.name,
            vehicle_size=vehicle_size,
            vehicle_size_name=VEHICLE_SIZE_NAMES[vehicle_size],
            base_price=base_price,
            distance_surcharge=surcharge,
            total_price=total_price,
            distance_km=distance_km,
            estimated_duration=service.estimated_duration or self.settings.default_service_duration_minutes,
            breakdown={
                "base_price": base_price,
                "distance_surcharge": surcharge,
                "total_price": total_price,
                "distance_km": distance_km,
                "free_radius_km": self.settings.free_radius_km,
                "surcharge_per_km": self.settings.surcharge_per_km,
            },
        )

    def calculate_multiple_services(
        self,
        service_ids: List[int],
        vehicle_size: VehicleSize,
        distance_km: float = None,
        postcode: str = None,
    ) -> List[PriceCalculation]:
        """
        Price several services. The first failure aborts the whole batch.

        The distance is resolved once and shared by every service.
        """
        distance_km = self.resolve_distance_km(distance_km, postcode)
        return [
            self.calculate_service_price(service_id, vehicle_size, distance_km=distance_km)
            for service_id in service_ids
        ]

    @service_operation("Failed to calculate service price")
    def price(self, service_id: int, vehicle_size: VehicleSize, distance_km: float = None, postcode: str = None):
        return self.calculate_service_price(service_id, vehicle_size, distance_km, postcode)

    @service_operation("Failed to calculate multiple service prices")
    def price_many(self, service_ids: List[int], vehicle_size: VehicleSize, distance_km: float = None, postcode: str = None):
        return self.calculate_multiple_services(service_ids, vehicle_size, distance_km, postcode)

    @service_operation("Failed to get pricing rules")
    def get_pricing_rules(self) -> dict:
        return {
            "free_radius_km": self.settings.free_radius_km,
            "surcharge_per_km": self.settings.surcharge_per_km,
            "business_postcode": self.settings.business_postcode,
        }

    @service_operation("Failed to get service price range")
    def get_service_price_range(self, service_id: int) -> dict:
        """Configured tier prices of a service with their min and max."""
        service = get_active_service(self.db, service_id)
        if not service:
            raise NotFoundError(f"Service {service_id} not found")

        pricing = get_service_pricing(self.db, service_id)
        if not pricing:
            raise PricingNotConfiguredError("Service pricing not configured", details={"service_id": service_id})

        tiers = []
        for size in VehicleSize:
            price = getattr(pricing, size.pricing_column)
            if price and price > 0:
                tiers.append({"vehicle_size": size.value, "name": size.display_name, "price": float(price)})

        prices = [tier["price"] for tier in tiers]
        return {
            "service_id": service.id,
            "service_name": service.name,
            "min_price": min(prices) if prices else 0.0,
            "max_price": max(prices) if prices else 0.0,
            "vehicle_sizes": tiers,
        }
