"""
Locust load tests for the RSVP API.

Run scenarios:
  locust -f locustfile.py --tags concurrency  # Overbooking: many guests, few seats
  locust -f locustfile.py --tags throughput   # Cached availability listing
  locust -f locustfile.py --tags edge         # Bad input
  locust -f locustfile.py                     # All scenarios

Admin password is read from MOKKA_ADMIN_PASSWORD (defaults to the dev value).
"""

import os
import random
from datetime import datetime, timezone, timedelta

from locust import HttpUser, task, between, tag, events

ADMIN_PASSWORD = os.environ.get("MOKKA_ADMIN_PASSWORD", "change-me")
RACE_SEATS = 10

# Shared state
SESSION_IDS = []
EVENT_IDS = []
RACE_SESSION_ID = None


def random_email():
    return f"load_{random.randint(100000, 999999)}@example.com"


def session_payload(days_ahead, capacity):
    start = datetime.now(timezone.utc) + timedelta(days=days_ahead)
    return {
        "start": start.isoformat(),
        "end": (start + timedelta(hours=2)).isoformat(),
        "capacity": capacity,
    }


def admin_headers(client):
    resp = client.post("/api/v1/admin/login", json={"password": ADMIN_PASSWORD})
    if resp.status_code != 200:
        return None
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "=" * 60)
    print(f"SETUP: first ConcurrencyUser creates a {RACE_SEATS}-seat session")
    print("=" * 60)


class ConcurrencyUser(HttpUser):
    """
    Overbooking test: 100 guests -> 10 seats

    Run: locust -f locustfile.py --tags concurrency -u 100 -r 50 --run-time 30s

    After the run, verify:
      SELECT reserved, capacity FROM event_sessions WHERE id = X;
      SELECT SUM(seats) FROM reservations WHERE session_id = X AND status <> 'CANCELLED';
    Both sums must match and stay <= 10.
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        global RACE_SESSION_ID
        self.email = random_email()

        if RACE_SESSION_ID is None:
            headers = admin_headers(self.client)
            if headers is None:
                return
            resp = self.client.post(
                "/api/v1/admin/events",
                json={
                    "title": "Overbooking Race",
                    "description": f"{RACE_SEATS} seats only",
                    "sessions": [session_payload(30, RACE_SEATS)],
                },
                headers=headers,
            )
            if resp.status_code == 201 and RACE_SESSION_ID is None:
                RACE_SESSION_ID = resp.json()["sessions"][0]["id"]
                print(f"\nCreated session {RACE_SESSION_ID} with {RACE_SEATS} seats\n")

    @tag("concurrency")
    @task
    def book_last_seats(self):
        """All guests fight for the same seats."""
        if not RACE_SESSION_ID:
            return

        with self.client.post(
            "/api/v1/rsvp",
            json={"session_id": RACE_SESSION_ID, "name": "Load Guest", "email": self.email, "seats": 1},
            name="/api/v1/rsvp [race]",
            catch_response=True,
        ) as resp:
            if resp.status_code in (201, 409):
                # 409: sold out or this guest already holds a seat
                resp.success()
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class ThroughputUser(HttpUser):
    """
    Cache effectiveness

    Run twice:
      1. With Redis: locust -f locustfile.py --tags throughput -u 100 -r 20 --run-time 60s
      2. With REDIS_ENABLED=false on the server, run again

    Compare avg response time, requests/sec and P95/P99 latency.
    """
    wait_time = between(0.1, 0.5)

    @tag("throughput", "read")
    @task(10)
    def list_availability(self):
        resp = self.client.get("/api/v1/events", name="/api/v1/events [cached]")
        if resp.status_code == 200:
            for event in resp.json().get("events", []):
                if event["id"] not in EVENT_IDS:
                    EVENT_IDS.append(event["id"])
                for session in event["sessions"]:
                    if session["id"] not in SESSION_IDS:
                        SESSION_IDS.append(session["id"])

    @tag("throughput", "read")
    @task(3)
    def get_event_detail(self):
        if EVENT_IDS:
            self.client.get(f"/api/v1/events/{random.choice(EVENT_IDS)}", name="/api/v1/events/{id}")

    @tag("throughput")
    @task(1)
    def health_check(self):
        self.client.get("/health")


class EdgeCaseUser(HttpUser):
    """
    Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    The service must answer with proper error codes, never 5xx.
    """
    wait_time = between(0.5, 1.5)

    def _expect(self, resp, allowed):
        if resp.status_code in allowed:
            resp.success()
        else:
            resp.failure(f"Expected {allowed}, got {resp.status_code}")

    @tag("edge")
    @task
    def unknown_session(self):
        with self.client.post(
            "/api/v1/rsvp",
            json={"session_id": 999999, "name": "Ghost", "email": random_email(), "seats": 1},
            catch_response=True,
        ) as resp:
            self._expect(resp, (404,))

    @tag("edge")
    @task
    def zero_seats(self):
        with self.client.post(
            "/api/v1/rsvp",
            json={"session_id": 1, "name": "Zero", "email": random_email(), "seats": 0},
            catch_response=True,
        ) as resp:
            self._expect(resp, (422,))

    @tag("edge")
    @task
    def huge_seats(self):
        with self.client.post(
            "/api/v1/rsvp",
            json={"session_id": 1, "name": "Crowd", "email": random_email(), "seats": 999999},
            catch_response=True,
        ) as resp:
            self._expect(resp, (400, 404, 409))

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post(
            "/api/v1/rsvp",
            data="not json at all",
            headers={"Content-Type": "application/json"},
            catch_response=True,
        ) as resp:
            self._expect(resp, (422,))

    @tag("edge")
    @task
    def unknown_reservation_code(self):
        with self.client.post(
            "/api/v1/rsvp/public-manage",
            json={"reservation_code": "NOPE0000", "action": "cancel"},
            catch_response=True,
        ) as resp:
            self._expect(resp, (404,))

    @tag("edge")
    @task
    def admin_without_token(self):
        with self.client.get("/api/v1/admin/rsvps", catch_response=True) as resp:
            self._expect(resp, (401,))


class RealisticUser(HttpUser):
    """
    Mixed workload

    Run: locust -f locustfile.py -u 200 -r 20 --run-time 120s

    Mostly browsing, some bookings, a few self-service changes.
    """
    wait_time = between(1, 3)

    def on_start(self):
        self.email = random_email()
        self.reservation = None

    @task(50)
    def browse_events(self):
        resp = self.client.get("/api/v1/events")
        if resp.status_code == 200:
            for event in resp.json().get("events", []):
                for session in event["sessions"]:
                    if session["id"] not in SESSION_IDS:
                        SESSION_IDS.append(session["id"])

    @task(10)
    def book_seats(self):
        if not SESSION_IDS or self.reservation:
            return
        resp = self.client.post(
            "/api/v1/rsvp",
            json={
                "session_id": random.choice(SESSION_IDS),
                "name": "Regular",
                "email": self.email,
                "seats": random.randint(1, 3),
            },
        )
        if resp.status_code == 201:
            self.reservation = resp.json()

    @task(3)
    def change_seats(self):
        if not self.reservation:
            return
        self.client.post(
            "/api/v1/rsvp/public-manage",
            json={
                "reservation_code": self.reservation["reservation_code"],
                "action": "modify",
                "rsvp_id": self.reservation["id"],
                "new_seats": random.randint(1, 4),
            },
        )

    @task(1)
    def cancel(self):
        if not self.reservation:
            return
        self.client.post(
            "/api/v1/rsvp/public-manage",
            json={"reservation_code": self.reservation["reservation_code"], "action": "cancel"},
        )
        self.reservation = None
