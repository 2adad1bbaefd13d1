"""
Reviews / Ratings Provider Connectors
Supports Yelp Fusion and a deterministic mock for offline use
"""
from typing import Any, Dict, List

from .base_connector import BaseProviderConnector
from bite_core.errors import ProviderUnavailable


class ReviewsConnector(BaseProviderConnector):
    """Base connector for review/rating sources"""

    group = "reviews"

    @staticmethod
    def empty_group() -> Dict[str, Any]:
        """Provider answered but knows nothing about this restaurant"""
        return {
            "rating": None,
            "review_count": 0,
            "reviews": [],
            "provider_id": None,
            "url": None,
        }


class YelpReviewsConnector(ReviewsConnector):
    """
    Connector for Yelp Fusion API
    Matches the restaurant by name + coordinates, then pulls review excerpts
    """

    def _set_auth_header(self):
        """Yelp uses Bearer token"""
        self.session.headers.update({"Authorization": f"Bearer {self.config.api_key}"})

    def fetch(self, restaurant: Dict[str, Any]) -> Dict[str, Any]:
        if not self.config.api_key:
            raise ProviderUnavailable(
                "Yelp API key not configured",
                provider=self.name,
                retryable=False,
            )

        search = self._make_request(
            endpoint="businesses/search",
            params={
                "term": restaurant.get("name", ""),
                "latitude": restaurant["latitude"],
                "longitude": restaurant["longitude"],
                "limit": 1,
            },
        )
        businesses = search.get("businesses")
        if not isinstance(businesses, list):
            raise ProviderUnavailable(
                "Yelp search response has no business list",
                provider=self.name,
                retryable=False,
            )
        if not businesses:
            return self.empty_group()

        business = businesses[0]
        reviews = self._fetch_reviews(business.get("id"))

        return {
            "rating": business.get("rating"),
            "review_count": business.get("review_count", len(reviews)),
            "reviews": reviews,
            "provider_id": business.get("id"),
            "url": business.get("url"),
            "phone": business.get("display_phone") or business.get("phone"),
            "photos": [business["image_url"]] if business.get("image_url") else [],
        }

    def _fetch_reviews(self, business_id) -> List[Dict[str, Any]]:
        if not business_id:
            return []
        payload = self._make_request(endpoint=f"businesses/{business_id}/reviews")
        return [
            {
                "author": (review.get("user") or {}).get("name"),
                "rating": review.get("rating"),
                "text": review.get("text"),
                "time_created": review.get("time_created"),
            }
            for review in payload.get("reviews", [])
        ]


class MockReviewsConnector(ReviewsConnector):
    """
    Mock connector for demos and offline development
    Derives stable fake ratings from the restaurant id
    """

    def _set_auth_header(self):
        pass

    def fetch(self, restaurant: Dict[str, Any]) -> Dict[str, Any]:
        seed = sum(ord(c) for c in str(restaurant.get("id", "")))
        rating = round(3.0 + (seed % 21) / 10, 1)
        count = 5 + seed % 200
        return {
            "rating": rating,
            "review_count": count,
            "reviews": [
                {
                    "author": "Local Guide",
                    "rating": round(rating),
                    "text": f"Solid spot, {restaurant.get('name', 'this place')} delivers.",
                    "time_created": None,
                }
            ],
            "provider_id": f"mock-{restaurant.get('id')}",
            "url": None,
        }
