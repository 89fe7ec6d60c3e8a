"""
Load testing scenarios menggunakan Locust.

Cara menjalankan (node 0 di port default 3000):
  python -m benor node --node-id 0 --nodes 4 --faulty-nodes 1 --initial-value 1
  locust -f benchmarks/load_test_scenarios.py --host=http://localhost:3000
"""

from locust import HttpUser, task, between, events
import random


class PeerVoteUser(HttpUser):
    """
    Simulate peer yang mengirim votes ke node.
    Sebagian vote sengaja malformed atau duplicate.
    """
    wait_time = between(0.05, 0.2)

    def on_start(self):
        """Called saat user start"""
        self.sender_id = random.randint(1, 1000)
        self.round = 0

    @task(5)
    def send_vote(self):
        """Kirim vote valid"""
        self.round += 1

        with self.client.post(
            "/message",
            json={
                'from': self.sender_id,
                'phase': random.choice([1, 2]),
                'round': self.round,
                'value': random.choice([0, 1])
            },
            catch_response=True
        ) as response:
            if response.status_code == 200:
                response.success()
            elif response.status_code == 500:
                # Node killed atau faulty
                response.success()
            else:
                response.failure(f"HTTP {response.status_code}")

    @task(1)
    def send_duplicate_vote(self):
        """Vote ulang untuk round yang sama, harus tetap 200"""
        payload = {'from': self.sender_id, 'phase': 1, 'round': self.round, 'value': 1}
        self.client.post("/message", json=payload)

        with self.client.post("/message", json=payload, catch_response=True) as response:
            if response.status_code in (200, 500):
                response.success()
            else:
                response.failure(f"HTTP {response.status_code}")

    @task(1)
    def send_malformed_vote(self):
        """Value di luar {0, 1} di-drop tanpa error"""
        with self.client.post(
            "/message",
            json={'from': self.sender_id, 'phase': 1, 'round': self.round, 'value': 2},
            catch_response=True
        ) as response:
            if response.status_code in (200, 500):
                response.success()
            else:
                response.failure(f"HTTP {response.status_code}")


class HarnessUser(HttpUser):
    """
    Simulate test harness yang polling state node.
    """
    wait_time = between(0.1, 0.5)

    @task(3)
    def get_state(self):
        """Poll getState"""
        with self.client.get("/getState", catch_response=True) as response:
            if response.status_code == 200:
                data = response.json()
                if set(data) == {'killed', 'x', 'decided', 'k'}:
                    response.success()
                else:
                    response.failure(f"Unexpected state: {data}")
            elif response.status_code == 500:
                # Faulty node
                response.success()
            else:
                response.failure(f"HTTP {response.status_code}")

    @task(1)
    def check_status(self):
        """Check live/faulty status"""
        with self.client.get("/status", catch_response=True) as response:
            if response.text in ('live', 'faulty'):
                response.success()
            else:
                response.failure(f"Unexpected status: {response.text}")


# Event handlers untuk custom metrics
@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("Load test starting...")


@events.test_stop.add_listener
def on_test_stop(environment, **kwargs):
    print("Load test complete!")
    print(f"Total requests: {environment.stats.total.num_requests}")
    print(f"Failure rate: {environment.stats.total.fail_ratio:.2%}")
