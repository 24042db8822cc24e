"""
Tests for the pricing engine.

Price = tier price of the service + £1.50/km beyond the 5 km free radius.
"""
import pytest
from unittest.mock import MagicMock

from db_models import VehicleSize
from db_service import create_service, upsert_service_pricing
from distance_service import DistanceResolver
from errors import DistanceUnavailableError, NotFoundError, PricingNotConfiguredError
from pricing_service import PricingService, calculate_distance_surcharge


class TestDistanceSurcharge:
    """calculate_distance_surcharge() is pure."""

    @pytest.mark.parametrize("distance_km,expected", [
        (0, 0.0),
        (3, 0.0),
        (5, 0.0),
        (6, 1.5),
        (10.2, 7.8),
        (12, 10.5),
    ])
    def test_surcharge(self, distance_km, expected):
        assert calculate_distance_surcharge(distance_km, 5.0, 1.5) == expected

    def test_no_distance_means_no_surcharge(self):
        assert calculate_distance_surcharge(None, 5.0, 1.5) == 0.0

    def test_rate_and_radius_are_parameters(self):
        assert calculate_distance_surcharge(12, 10.0, 2.0) == 4.0


class TestCalculateServicePrice:
    def test_medium_with_surcharge(self, pricing_service, services):
        valet, _ = services

        quote = pricing_service.calculate_service_price(valet.id, VehicleSize.M, distance_km=12)

        assert quote.service_name == "Full Valet"
        assert quote.vehicle_size == VehicleSize.M
        assert quote.vehicle_size_name == "Medium"
        assert quote.base_price == 40.0
        assert quote.distance_surcharge == 10.5
        assert quote.total_price == 50.5
        assert quote.estimated_duration == 90
        assert quote.breakdown["free_radius_km"] == 5.0

    def test_inside_free_radius(self, pricing_service, services):
        valet, _ = services

        quote = pricing_service.calculate_service_price(valet.id, VehicleSize.L, distance_km=4)

        assert quote.distance_surcharge == 0.0
        assert quote.total_price == 50.0

    def test_postcode_is_resolved_from_base(self, pricing_service, services):
        valet, _ = services

        # NG8 is 9 km from the base in the offline table
        quote = pricing_service.calculate_service_price(valet.id, VehicleSize.M, postcode="NG8 2AB")

        assert quote.distance_km == 9.0
        assert quote.distance_surcharge == 6.0
        assert quote.total_price == 46.0

    def test_missing_service(self, pricing_service, services):
        with pytest.raises(NotFoundError):
            pricing_service.calculate_service_price(9999, VehicleSize.M, distance_km=0)

    def test_inactive_service(self, pricing_service, db_session):
        retired = create_service(db_session, "Retired Wax", estimated_duration=30, is_active=False)
        upsert_service_pricing(db_session, retired.id, small=10, medium=10, large=10, extra_large=10)

        with pytest.raises(NotFoundError):
            pricing_service.calculate_service_price(retired.id, VehicleSize.M, distance_km=0)

    def test_no_pricing_row(self, pricing_service, db_session):
        unpriced = create_service(db_session, "New Service")

        with pytest.raises(PricingNotConfiguredError) as exc_info:
            pricing_service.calculate_service_price(unpriced.id, VehicleSize.M, distance_km=0)

        assert exc_info.value.message == "Service pricing not configured"

    def test_tier_without_price(self, pricing_service, services):
        _, interior = services

        with pytest.raises(PricingNotConfiguredError) as exc_info:
            pricing_service.calculate_service_price(interior.id, VehicleSize.XL, distance_km=0)

        assert exc_info.value.message == "No pricing found for vehicle size: Extra Large"

    def test_zero_price_is_not_configured(self, pricing_service, db_session):
        free = create_service(db_session, "Free Check")
        upsert_service_pricing(db_session, free.id, small=0, medium=0, large=0, extra_large=0)

        with pytest.raises(PricingNotConfiguredError):
            pricing_service.calculate_service_price(free.id, VehicleSize.S, distance_km=0)

    def test_default_duration_when_service_has_none(self, pricing_service, db_session):
        quick = create_service(db_session, "Quick Wash")
        upsert_service_pricing(db_session, quick.id, small=15, medium=15, large=15, extra_large=15)

        quote = pricing_service.calculate_service_price(quick.id, VehicleSize.S, distance_km=0)

        assert quote.estimated_duration == 60

    def test_settings_change_the_rules(self, db_session, settings, resolver, services):
        valet, _ = services
        wide_radius = settings.model_copy(update={"free_radius_km": 10.0, "surcharge_per_km": 2.0})
        service = PricingService(db_session, wide_radius, distance_resolver=resolver)

        quote = service.calculate_service_price(valet.id, VehicleSize.M, distance_km=12)

        assert quote.distance_surcharge == 4.0


class TestCalculateMultipleServices:
    def test_distance_resolved_once(self, db_session, settings, services):
        valet, interior = services
        resolver = MagicMock(spec=DistanceResolver)
        resolver.distance_from_base.return_value = MagicMock(distance_km=12.0)
        service = PricingService(db_session, settings, distance_resolver=resolver)

        quotes = service.calculate_multiple_services([valet.id, interior.id], VehicleSize.M, postcode="LE1 1AA")

        assert [q.base_price for q in quotes] == [40.0, 25.0]
        assert all(q.distance_km == 12.0 for q in quotes)
        resolver.distance_from_base.assert_called_once_with("LE1 1AA")

    def test_first_failure_aborts(self, pricing_service, services):
        valet, interior = services

        with pytest.raises(PricingNotConfiguredError):
            pricing_service.calculate_multiple_services([valet.id, interior.id], VehicleSize.XL, distance_km=0)


class TestPricingEnvelope:
    def test_price_many_success(self, pricing_service, services):
        valet, interior = services

        response = pricing_service.price_many([valet.id, interior.id], VehicleSize.M, distance_km=12)

        assert response.success is True
        assert len(response.data) == 2

    def test_price_not_found(self, pricing_service, services):
        response = pricing_service.price(9999, VehicleSize.M, distance_km=0)

        assert response.success is False
        assert response.error.code == "NOT_FOUND"

    def test_distance_unavailable(self, db_session, settings, services):
        valet, _ = services
        resolver = MagicMock(spec=DistanceResolver)
        resolver.distance_from_base.side_effect = DistanceUnavailableError()
        service = PricingService(db_session, settings, distance_resolver=resolver)

        response = service.price(valet.id, VehicleSize.M, postcode="NG1 1AA")

        assert response.success is False
        assert response.error.code == "DISTANCE_UNAVAILABLE"

    def test_pricing_rules(self, pricing_service):
        response = pricing_service.get_pricing_rules()

        assert response.data == {
            "free_radius_km": 5.0,
            "surcharge_per_km": 1.5,
            "business_postcode": "NG5 1FB",
        }

    def test_price_range(self, pricing_service, services):
        _, interior = services

        response = pricing_service.get_service_price_range(interior.id)

        assert response.data["min_price"] == 20.0
        assert response.data["max_price"] == 30.0
        assert [tier["vehicle_size"] for tier in response.data["vehicle_sizes"]] == ["S", "M", "L"]
