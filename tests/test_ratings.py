"""
Tests for Ratings

Tests the aggregate maintainer and the rating endpoints:
- Recompute after create / update / delete
- Zero-rating, idempotence and recent-window behaviour
- Failure handling (read failure leaves aggregates untouched)
- Rating endpoints: upsert, owner checks, votes, flags
- Cache invalidation after a rating mutation

Business Rules:
- One rating per user per server
- combined_score == (avg_trustworthiness + avg_usefulness) / 2
- recent_ratings_count <= total_ratings
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import pytest
from fastapi import status
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from server_directory.models import Rating, ReviewVote, Server
from server_directory.services.ratings import (
    AggregateRecomputeError,
    recompute_all_server_aggregates,
    recompute_server_aggregates,
)


# =============================================================================
# Helper Functions
# =============================================================================


def user_headers(user_id: str) -> dict:
    return {"X-User-Id": user_id}


def assert_aggregate_invariants(server: Server) -> None:
    assert server.combined_score == (server.avg_trustworthiness + server.avg_usefulness) / 2
    assert 0 <= server.recent_ratings_count <= server.total_ratings
    if server.total_ratings == 0:
        assert server.avg_trustworthiness == 0
        assert server.avg_usefulness == 0
        assert server.combined_score == 0


# =============================================================================
# Aggregate Maintainer
# =============================================================================


class TestRecomputeServerAggregates:
    """Tests for services.ratings.recompute_server_aggregates"""

    def test_zero_ratings_yields_zeros(self, db_session: Session, sample_server: Server):
        """A server without ratings gets all-zero aggregates, not an error."""
        aggregates = recompute_server_aggregates(db_session, sample_server.id)

        assert aggregates.total_ratings == 0
        assert aggregates.avg_trustworthiness == 0
        assert aggregates.avg_usefulness == 0
        assert aggregates.combined_score == 0
        assert aggregates.recent_ratings_count == 0

        db_session.refresh(sample_server)
        assert_aggregate_invariants(sample_server)

    def test_delete_scenario(self, db_session: Session, sample_server: Server, make_rating):
        """(5,3) and (1,1), then delete the second: averages fall back to 5 and 3."""
        make_rating(sample_server, "alice", trustworthiness=5, usefulness=3)
        second = make_rating(sample_server, "bob", trustworthiness=1, usefulness=1)

        recompute_server_aggregates(db_session, sample_server.id)
        db_session.refresh(sample_server)
        assert sample_server.total_ratings == 2
        assert sample_server.avg_trustworthiness == 3
        assert sample_server.avg_usefulness == 2
        assert sample_server.combined_score == 2.5

        db_session.delete(second)
        db_session.commit()

        aggregates = recompute_server_aggregates(db_session, sample_server.id)
        db_session.refresh(sample_server)

        assert aggregates.avg_trustworthiness == 5
        assert aggregates.avg_usefulness == 3
        assert aggregates.total_ratings == 1
        assert aggregates.combined_score == 4
        assert sample_server.combined_score == 4
        assert_aggregate_invariants(sample_server)

    def test_idempotent(self, db_session: Session, sample_server: Server, make_rating):
        """Two recomputes with no mutation in between give identical results."""
        make_rating(sample_server, "alice", trustworthiness=4, usefulness=5)
        make_rating(sample_server, "bob", trustworthiness=2, usefulness=3)
        make_rating(sample_server, "carol", trustworthiness=5, usefulness=2)

        now = datetime.now(UTC)
        first = recompute_server_aggregates(db_session, sample_server.id, now=now)
        second = recompute_server_aggregates(db_session, sample_server.id, now=now)

        assert first == second
        db_session.refresh(sample_server)
        assert_aggregate_invariants(sample_server)

    def test_recent_window(self, db_session: Session, sample_server: Server, make_rating):
        """Only ratings from the trailing 30 days count as recent."""
        now = datetime.now(UTC)
        make_rating(sample_server, "old", created_at=now - timedelta(days=40))
        make_rating(sample_server, "new", created_at=now - timedelta(days=2))

        aggregates = recompute_server_aggregates(db_session, sample_server.id, now=now)

        assert aggregates.total_ratings == 2
        assert aggregates.recent_ratings_count == 1

    def test_non_integer_means(self, db_session: Session, sample_server: Server, make_rating):
        """combined_score equals the mean of the stored averages exactly."""
        make_rating(sample_server, "alice", trustworthiness=5, usefulness=1)
        make_rating(sample_server, "bob", trustworthiness=4, usefulness=2)
        make_rating(sample_server, "carol", trustworthiness=4, usefulness=2)

        recompute_server_aggregates(db_session, sample_server.id)
        db_session.refresh(sample_server)

        assert sample_server.avg_trustworthiness == pytest.approx(13 / 3)
        assert_aggregate_invariants(sample_server)

    def test_unknown_server(self, db_session: Session):
        """Recomputing a server that does not exist is an error."""
        with pytest.raises(AggregateRecomputeError):
            recompute_server_aggregates(db_session, "nobody/nothing")

    def test_read_failure_leaves_aggregates(
        self, db_session: Session, make_server, make_rating
    ):
        """A failed read aborts before writing anything."""
        server = make_server("stable", total_ratings=7, avg_trustworthiness=4, avg_usefulness=2)
        make_rating(server, "alice", trustworthiness=1, usefulness=1)

        with patch(
            "server_directory.services.ratings._read_aggregates",
            side_effect=OperationalError("SELECT", {}, Exception("connection lost")),
        ):
            with pytest.raises(AggregateRecomputeError):
                recompute_server_aggregates(db_session, server.id)

        db_session.refresh(server)
        assert server.total_ratings == 7
        assert server.combined_score == 3

    def test_recompute_all(self, db_session: Session, make_server, make_rating):
        """Every server is recomputed and counted."""
        first = make_server("one", total_ratings=9)
        second = make_server("two")
        make_rating(second, "alice", trustworthiness=3, usefulness=5)

        assert recompute_all_server_aggregates(db_session) == 2

        db_session.refresh(first)
        db_session.refresh(second)
        assert first.total_ratings == 0
        assert second.total_ratings == 1
        assert second.combined_score == 4


# =============================================================================
# Rating Endpoints
# =============================================================================


class TestSubmitRating:
    """Tests for POST /api/v1/ratings"""

    def test_create_rating_updates_aggregates(
        self, client: TestClient, sample_server: Server
    ):
        """Creating a rating recomputes the server's aggregates."""
        response = client.post(
            "/api/v1/ratings",
            json={
                "server_id": sample_server.id,
                "trustworthiness": 5,
                "usefulness": 3,
                "text": "  Works well  ",
            },
            headers=user_headers("alice"),
        )

        assert response.status_code == status.HTTP_201_CREATED
        data = response.json()
        assert data["user_id"] == "alice"
        assert data["text"] == "Works well"
        assert data["status"] == "approved"

        server = client.get(f"/api/v1/servers/{sample_server.id}").json()
        assert server["total_ratings"] == 1
        assert server["avg_trustworthiness"] == 5
        assert server["avg_usefulness"] == 3
        assert server["combined_score"] == 4

    def test_resubmit_replaces_rating(
        self, client: TestClient, db_session: Session, sample_server: Server
    ):
        """A second submission by the same user updates the existing rating."""
        for trust in (2, 4):
            response = client.post(
                "/api/v1/ratings",
                json={"server_id": sample_server.id, "trustworthiness": trust, "usefulness": 4},
                headers=user_headers("alice"),
            )
            assert response.status_code == status.HTTP_201_CREATED

        ratings = db_session.execute(
            select(Rating).where(Rating.server_id == sample_server.id)
        ).scalars().all()
        assert len(ratings) == 1
        assert ratings[0].trustworthiness == 4

        db_session.refresh(sample_server)
        assert sample_server.total_ratings == 1
        assert sample_server.avg_trustworthiness == 4

    def test_missing_user_header(self, client: TestClient, sample_server: Server):
        response = client.post(
            "/api/v1/ratings",
            json={"server_id": sample_server.id, "trustworthiness": 5, "usefulness": 5},
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_scores_out_of_range(self, client: TestClient, sample_server: Server):
        response = client.post(
            "/api/v1/ratings",
            json={"server_id": sample_server.id, "trustworthiness": 6, "usefulness": 0},
            headers=user_headers("alice"),
        )

        assert response.status_code == 422

    def test_unknown_server(self, client: TestClient):
        response = client.post(
            "/api/v1/ratings",
            json={"server_id": "nobody/nothing", "trustworthiness": 5, "usefulness": 5},
            headers=user_headers("alice"),
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_cannot_rate_own_server(self, client: TestClient, make_server):
        server = make_server("mine", source="user", owner_id="alice")

        response = client.post(
            "/api/v1/ratings",
            json={"server_id": server.id, "trustworthiness": 5, "usefulness": 5},
            headers=user_headers("alice"),
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_recompute_failure_is_surfaced(self, client: TestClient, sample_server: Server):
        """A failed aggregate write fails the request instead of reporting success."""
        with patch(
            "server_directory.routers.ratings.recompute_server_aggregates",
            side_effect=AggregateRecomputeError("write failed"),
        ):
            response = client.post(
                "/api/v1/ratings",
                json={"server_id": sample_server.id, "trustworthiness": 5, "usefulness": 5},
                headers=user_headers("alice"),
            )

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json()["error"]["code"] == "INTERNAL_ERROR"

    def test_invalidates_user_ratings_cache(self, client: TestClient, sample_server: Server):
        """The cached ratings list of the author is dropped on mutation."""
        first = client.get("/api/v1/users/alice/ratings")
        assert first.json() == []

        client.post(
            "/api/v1/ratings",
            json={"server_id": sample_server.id, "trustworthiness": 3, "usefulness": 3},
            headers=user_headers("alice"),
        )

        second = client.get("/api/v1/users/alice/ratings")
        assert len(second.json()) == 1
        assert second.json()[0]["server_id"] == sample_server.id

    def test_invalidates_server_listing_cache(self, client: TestClient, sample_server: Server):
        """Cached listing pages reflect new aggregates after a rating."""
        before = client.get("/api/v1/servers").json()
        assert before["items"][0]["total_ratings"] == 0

        client.post(
            "/api/v1/ratings",
            json={"server_id": sample_server.id, "trustworthiness": 4, "usefulness": 4},
            headers=user_headers("alice"),
        )

        after = client.get("/api/v1/servers").json()
        assert after["items"][0]["total_ratings"] == 1


class TestUpdateDeleteRating:
    """Tests for PATCH / DELETE /api/v1/ratings/{rating_id}"""

    def test_update_own_rating(
        self, client: TestClient, db_session: Session, sample_server: Server, make_rating
    ):
        rating = make_rating(sample_server, "alice", trustworthiness=2, usefulness=2)
        recompute_server_aggregates(db_session, sample_server.id)

        response = client.patch(
            f"/api/v1/ratings/{rating.id}",
            json={"usefulness": 4},
            headers=user_headers("alice"),
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["usefulness"] == 4
        assert response.json()["trustworthiness"] == 2

        db_session.refresh(sample_server)
        assert sample_server.avg_usefulness == 4
        assert sample_server.combined_score == 3

    def test_update_other_users_rating(
        self, client: TestClient, sample_server: Server, make_rating
    ):
        rating = make_rating(sample_server, "alice")

        response = client.patch(
            f"/api/v1/ratings/{rating.id}",
            json={"usefulness": 1},
            headers=user_headers("mallory"),
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_delete_own_rating(
        self, client: TestClient, db_session: Session, sample_server: Server, make_rating
    ):
        """Deleting reproduces the (5,3) + (1,1) scenario through the API."""
        make_rating(sample_server, "alice", trustworthiness=5, usefulness=3)
        second = make_rating(sample_server, "bob", trustworthiness=1, usefulness=1)
        recompute_server_aggregates(db_session, sample_server.id)

        response = client.delete(
            f"/api/v1/ratings/{second.id}",
            headers=user_headers("bob"),
        )

        assert response.status_code == status.HTTP_204_NO_CONTENT

        db_session.refresh(sample_server)
        assert sample_server.total_ratings == 1
        assert sample_server.avg_trustworthiness == 5
        assert sample_server.avg_usefulness == 3
        assert sample_server.combined_score == 4

    def test_delete_other_users_rating(
        self, client: TestClient, sample_server: Server, make_rating
    ):
        rating = make_rating(sample_server, "alice")

        response = client.delete(
            f"/api/v1/ratings/{rating.id}",
            headers=user_headers("mallory"),
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_delete_missing_rating(self, client: TestClient):
        response = client.delete("/api/v1/ratings/99999", headers=user_headers("alice"))

        assert response.status_code == status.HTTP_404_NOT_FOUND


class TestReviewFeedback:
    """Tests for POST /api/v1/ratings/{rating_id}/vote and /flag"""

    def test_vote_counts(
        self, client: TestClient, db_session: Session, sample_server: Server, make_rating
    ):
        """Votes are tallied per user; changing a vote moves it between counts."""
        rating = make_rating(sample_server, "alice")

        client.post(f"/api/v1/ratings/{rating.id}/vote", json={"helpful": True},
                    headers=user_headers("bob"))
        client.post(f"/api/v1/ratings/{rating.id}/vote", json={"helpful": True},
                    headers=user_headers("carol"))
        response = client.post(f"/api/v1/ratings/{rating.id}/vote", json={"helpful": False},
                               headers=user_headers("bob"))

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {
            "rating_id": rating.id,
            "helpful_count": 1,
            "not_helpful_count": 1,
        }
        votes = db_session.execute(
            select(ReviewVote).where(ReviewVote.rating_id == rating.id)
        ).scalars().all()
        assert len(votes) == 2

    def test_cannot_vote_own_review(
        self, client: TestClient, sample_server: Server, make_rating
    ):
        rating = make_rating(sample_server, "alice")

        response = client.post(
            f"/api/v1/ratings/{rating.id}/vote",
            json={"helpful": True},
            headers=user_headers("alice"),
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_flag_threshold(self, client: TestClient, sample_server: Server, make_rating):
        """The third distinct flag marks the review as flagged."""
        rating = make_rating(sample_server, "alice")

        statuses = []
        for flagger in ("bob", "carol", "dave"):
            response = client.post(
                f"/api/v1/ratings/{rating.id}/flag",
                headers=user_headers(flagger),
            )
            assert response.status_code == status.HTTP_200_OK
            statuses.append(response.json()["status"])

        assert statuses == ["approved", "approved", "flagged"]
        assert response.json()["flag_count"] == 3

    def test_duplicate_flag(self, client: TestClient, sample_server: Server, make_rating):
        rating = make_rating(sample_server, "alice")

        client.post(f"/api/v1/ratings/{rating.id}/flag", headers=user_headers("bob"))
        response = client.post(f"/api/v1/ratings/{rating.id}/flag", headers=user_headers("bob"))

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_cannot_flag_own_review(
        self, client: TestClient, sample_server: Server, make_rating
    ):
        rating = make_rating(sample_server, "alice")

        response = client.post(
            f"/api/v1/ratings/{rating.id}/flag",
            headers=user_headers("alice"),
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN
