"""Tests for route deviation evaluation"""
import pytest

from trustloopz.models import DeviationState, RouteStatus
from trustloopz.services.deviation import evaluate


class TestEvaluate:
    """Tests for evaluate()"""

    @pytest.mark.parametrize("distance", [0.0, 0.4, 2.75, 120.0])
    def test_off_route_reports_distance(self, distance):
        """Off route always yields a deviated state carrying the response distance."""
        state = evaluate(None, RouteStatus(is_on_route=False, distance_from_route_km=distance))

        assert state == DeviationState(is_deviated=True, distance_km=distance)

    @pytest.mark.parametrize("previous", [
        None,
        DeviationState(is_deviated=True, distance_km=3.2),
    ])
    def test_on_route_clears_state(self, previous):
        """On route clears any prior deviation."""
        assert evaluate(previous, RouteStatus(is_on_route=True, distance_from_route_km=0.1)) is None

    def test_missing_status_keeps_previous(self):
        """No routeStatus in the response leaves state unchanged."""
        previous = DeviationState(is_deviated=True, distance_km=1.5)

        assert evaluate(previous, None) is previous
        assert evaluate(None, None) is None

    def test_out_of_order_responses_are_not_assumed_monotonic(self):
        """A smaller distance arriving later replaces a larger one."""
        state = evaluate(None, RouteStatus(is_on_route=False, distance_from_route_km=5.0))
        state = evaluate(state, RouteStatus(is_on_route=False, distance_from_route_km=1.0))

        assert state.distance_km == 1.0

    def test_wire_field_names(self):
        """RouteStatus parses the server's camelCase fields."""
        status = RouteStatus.model_validate({"isOnRoute": False, "distanceFromRoute": 4.2})

        assert status.is_on_route is False
        assert status.distance_from_route_km == 4.2


def test_deviated_state_rejects_negative_distance():
    """Test a deviated state cannot carry a negative distance"""
    with pytest.raises(ValueError):
        DeviationState(is_deviated=True, distance_km=-1.0)
