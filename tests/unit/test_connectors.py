# =============================================================================
# tests/unit/test_connectors.py
# Unit Tests for Provider Connectors and the Provider Registry
# =============================================================================

import json
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import requests


def make_response(status_code, body=None, text=None):
    """Real requests.Response with a canned body"""
    response = requests.Response()
    response.status_code = status_code
    response.url = "https://provider.test/endpoint"
    if body is not None:
        response._content = json.dumps(body).encode()
    else:
        response._content = (text or "").encode()
    return response


def make_config(name, base_url="https://provider.test", api_key="test-key"):
    from bite_core.api import ProviderConfig

    return ProviderConfig(provider_name=name, base_url=base_url, api_key=api_key, timeout=3)


@pytest.fixture
def yelp():
    from bite_core.api import YelpReviewsConnector

    connector = YelpReviewsConnector(make_config("reviews_yelp"))
    connector.session.request = MagicMock()
    return connector


class TestRequestErrors:
    """Tests for HTTP failure classification in _make_request"""

    @pytest.mark.parametrize("status_code,retryable", [
        (429, True),
        (503, True),
        (500, True),
        (404, False),
        (401, False),
    ])
    def test_http_status(self, yelp, sample_restaurant, status_code, retryable):
        from bite_core.errors import ProviderUnavailable

        yelp.session.request.return_value = make_response(status_code, {"error": "x"})

        with pytest.raises(ProviderUnavailable) as exc_info:
            yelp.fetch(sample_restaurant)

        assert exc_info.value.status_code == status_code
        assert exc_info.value.retryable is retryable
        assert exc_info.value.rate_limited is (status_code == 429)

    def test_timeout_is_retryable(self, yelp, sample_restaurant):
        from bite_core.errors import ProviderUnavailable

        yelp.session.request.side_effect = requests.exceptions.Timeout()

        with pytest.raises(ProviderUnavailable) as exc_info:
            yelp.fetch(sample_restaurant)

        assert exc_info.value.retryable is True
        assert "timed out" in exc_info.value.message

    def test_connection_error_is_retryable(self, yelp, sample_restaurant):
        from bite_core.errors import ProviderUnavailable

        yelp.session.request.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(ProviderUnavailable) as exc_info:
            yelp.fetch(sample_restaurant)

        assert exc_info.value.retryable is True

    def test_non_json_body_is_permanent(self, yelp, sample_restaurant):
        from bite_core.errors import ProviderUnavailable

        yelp.session.request.return_value = make_response(200, text="<html>maintenance</html>")

        with pytest.raises(ProviderUnavailable) as exc_info:
            yelp.fetch(sample_restaurant)

        assert exc_info.value.retryable is False

    def test_non_object_payload_is_permanent(self, yelp, sample_restaurant):
        from bite_core.errors import ProviderUnavailable

        yelp.session.request.return_value = make_response(200, ["not", "an", "object"])

        with pytest.raises(ProviderUnavailable) as exc_info:
            yelp.fetch(sample_restaurant)

        assert exc_info.value.retryable is False

    def test_test_connection_reports_failure(self, yelp):
        yelp.session.request.return_value = make_response(503, {})

        result = yelp.test_connection()

        assert result["status"] == "error"
        assert result["retryable"] is True


class TestYelpReviews:
    """Tests for the Yelp reviews connector"""

    def test_bearer_auth_header(self, yelp):
        assert yelp.session.headers["Authorization"] == "Bearer test-key"

    def test_fetch_merges_search_and_reviews(self, yelp, sample_restaurant):
        yelp.session.request.side_effect = [
            make_response(200, {"businesses": [{
                "id": "luigi-nyc",
                "rating": 4.5,
                "review_count": 321,
                "url": "https://www.yelp.com/biz/luigi-nyc",
                "display_phone": "(212) 555-0100",
                "image_url": "https://img/luigi.jpg",
            }]}),
            make_response(200, {"reviews": [
                {"user": {"name": "Ana"}, "rating": 5, "text": "Best carbonara", "time_created": "2024-01-02"},
            ]}),
        ]

        data = yelp.fetch(sample_restaurant)

        assert data["rating"] == 4.5
        assert data["review_count"] == 321
        assert data["reviews"][0]["author"] == "Ana"
        assert data["provider_id"] == "luigi-nyc"
        assert data["photos"] == ["https://img/luigi.jpg"]

        search_call = yelp.session.request.call_args_list[0]
        assert search_call.kwargs["url"] == "https://provider.test/businesses/search"
        assert search_call.kwargs["params"]["latitude"] == sample_restaurant["latitude"]

    def test_no_match_is_empty_group(self, yelp, sample_restaurant):
        yelp.session.request.return_value = make_response(200, {"businesses": []})

        data = yelp.fetch(sample_restaurant)

        assert data["reviews"] == []
        assert data["rating"] is None
        assert yelp.session.request.call_count == 1

    def test_missing_business_list_is_permanent(self, yelp, sample_restaurant):
        from bite_core.errors import ProviderUnavailable

        yelp.session.request.return_value = make_response(200, {"total": 0})

        with pytest.raises(ProviderUnavailable) as exc_info:
            yelp.fetch(sample_restaurant)

        assert exc_info.value.retryable is False

    def test_missing_key(self, sample_restaurant):
        from bite_core.api import YelpReviewsConnector
        from bite_core.errors import ProviderUnavailable

        connector = YelpReviewsConnector(make_config("reviews_yelp", api_key=None))
        connector.session.request = MagicMock()

        with pytest.raises(ProviderUnavailable) as exc_info:
            connector.fetch(sample_restaurant)

        assert exc_info.value.retryable is False
        connector.session.request.assert_not_called()

    def test_mock_is_deterministic(self, sample_restaurant):
        from bite_core.api import MockReviewsConnector

        connector = MockReviewsConnector(make_config("reviews_mock", api_key=None))

        assert connector.fetch(sample_restaurant) == connector.fetch(sample_restaurant)
        assert 3.0 <= connector.fetch(sample_restaurant)["rating"] <= 5.0


class TestOpenTable:
    """Tests for the reservation connector"""

    def test_listing_found(self, sample_restaurant):
        from bite_core.api import OpenTableConnector

        connector = OpenTableConnector(make_config("reservations_opentable"))
        connector.session.request = MagicMock(return_value=make_response(200, {"items": [
            {"id": 9001, "reserve_url": "https://www.opentable.com/r/luigi", "is_available": True},
        ]}))

        data = connector.fetch(sample_restaurant)

        assert data == {
            "provider_id": 9001,
            "reservation_url": "https://www.opentable.com/r/luigi",
            "available": True,
        }
        assert connector.session.request.call_args.kwargs["method"] == "POST"

    def test_no_listing_falls_back_to_search(self, sample_restaurant):
        from bite_core.api import OpenTableConnector

        connector = OpenTableConnector(make_config("reservations_opentable"))
        connector.session.request = MagicMock(return_value=make_response(200, {"items": []}))

        data = connector.fetch(sample_restaurant)

        assert data["available"] is False
        assert data["provider_id"] is None
        assert data["reservation_url"] == "https://www.opentable.com/s?term=luigis-trattoria"

    def test_fallback_url_slug(self):
        from bite_core.api import fallback_reservation_url

        assert fallback_reservation_url("  Café  Olé! ") == "https://www.opentable.com/s?term=caf%C3%A9-ol%C3%A9"
        assert fallback_reservation_url("") == "https://www.opentable.com/s?term="


class TestGooglePlaces:
    """Tests for place details parsing and the Places connector"""

    @pytest.fixture
    def places(self):
        from bite_core.api import GooglePlacesStatusConnector

        connector = GooglePlacesStatusConnector(make_config("places_google"))
        connector.session.request = MagicMock()
        return connector

    def test_fetch_status(self, places):
        places.session.request.return_value = make_response(200, {
            "status": "OK",
            "result": {
                "business_status": "OPERATIONAL",
                "opening_hours": {"open_now": False, "weekday_text": ["Monday: Closed"]},
                "current_opening_hours": {"open_now": True, "weekday_text": ["Monday: 9 AM - 5 PM"]},
            },
        })

        data = places.fetch_status("ChIJ-luigi")

        assert data["status"] == "operational"
        assert data["is_open_now"] is True
        assert data["opening_hours"] == "Monday: 9 AM - 5 PM"
        params = places.session.request.call_args.kwargs["params"]
        assert params["key"] == "test-key"
        assert params["place_id"] == "ChIJ-luigi"

    def test_over_query_limit_is_rate_limited(self, places):
        from bite_core.errors import ProviderUnavailable

        places.session.request.return_value = make_response(200, {"status": "OVER_QUERY_LIMIT"})

        with pytest.raises(ProviderUnavailable) as exc_info:
            places.fetch_status("ChIJ-luigi")

        assert exc_info.value.rate_limited is True
        assert exc_info.value.retryable is True

    def test_request_denied_is_permanent(self, places):
        from bite_core.errors import ProviderUnavailable

        places.session.request.return_value = make_response(
            200, {"status": "REQUEST_DENIED", "error_message": "bad key"}
        )

        with pytest.raises(ProviderUnavailable) as exc_info:
            places.fetch_status("ChIJ-luigi")

        assert exc_info.value.retryable is False
        assert "bad key" in exc_info.value.message

    def test_fetch_looks_up_place_id(self, places, sample_restaurant):
        places.session.request.side_effect = [
            make_response(200, {"status": "OK", "candidates": [{"place_id": "ChIJ-found"}]}),
            make_response(200, {"status": "OK", "result": {"business_status": "CLOSED_TEMPORARILY"}}),
        ]
        restaurant = {k: v for k, v in sample_restaurant.items() if k != "google_place_id"}

        data = places.fetch(restaurant)

        assert data["place_id"] == "ChIJ-found"
        assert data["status"] == "closed_temporarily"

    def test_parse_sparse_result(self):
        from bite_core.api import parse_place_details

        assert parse_place_details({}) == {
            "estimated_wait_minutes": None,
            "current_popularity": None,
        }

    def test_parse_unknown_business_status(self):
        from bite_core.api import parse_place_details

        assert parse_place_details({"business_status": "MOVED"})["status"] == "unknown"

    def test_mock_places_hours(self):
        from bite_core.api import MockPlacesConnector

        noon = MockPlacesConnector(
            make_config("places_mock", api_key=None),
            clock=lambda: datetime(2024, 5, 1, 12, tzinfo=timezone.utc),
        )
        late = MockPlacesConnector(
            make_config("places_mock", api_key=None),
            clock=lambda: datetime(2024, 5, 1, 23, tzinfo=timezone.utc),
        )

        assert noon.fetch_status("p")["is_open_now"] is True
        assert late.fetch_status("p")["is_open_now"] is False


class TestProviderRegistry:
    """Tests for building connectors from settings"""

    def test_no_keys_means_unavailable(self, settings):
        from bite_core.api import ProviderRegistry

        registry = ProviderRegistry(settings)

        assert registry.enrichment_connectors() == {"reviews": None, "reservations": None}
        assert registry.test_all_connections()["places"]["status"] == "unavailable"

    def test_mocks_when_allowed(self, settings):
        from bite_core.api import MockReservationConnector, MockReviewsConnector, ProviderRegistry

        connectors = ProviderRegistry(settings, use_mocks=True).enrichment_connectors()

        assert isinstance(connectors["reviews"], MockReviewsConnector)
        assert isinstance(connectors["reservations"], MockReservationConnector)

    def test_real_connector_with_key(self, settings):
        from bite_core.api import ProviderRegistry, YelpReviewsConnector

        settings.providers["reviews"].api_key = "yelp-key"
        registry = ProviderRegistry(settings, use_mocks=True)

        connector = registry.get_connector("reviews")

        assert isinstance(connector, YelpReviewsConnector)
        assert registry.get_connector("reviews") is connector
        assert connector.name == "reviews_yelp"

    def test_disabled_group(self, settings):
        from bite_core.api import ProviderRegistry

        settings.providers["reservations"].enabled = False

        assert ProviderRegistry(settings, use_mocks=True).get_connector("reservations") is None

    def test_unknown_group(self, settings):
        from bite_core.api import ProviderRegistry

        with pytest.raises(ValueError):
            ProviderRegistry(settings).get_connector("menus")

    def test_available_providers(self, settings):
        from bite_core.api import ProviderRegistry

        assert ProviderRegistry(settings).get_available_providers("places") == ["mock", "google"]
