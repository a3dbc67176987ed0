#!/usr/bin/env python3
"""
End-to-end smoke check against a running Declutter API.

Submits a photo, triggers processing, polls until the job is terminal and
checks the cache headers along the way. Needs a real OPENAI_API_KEY on the
server.

Usage:
    python -m scripts.smoke_api path/to/room.jpg
"""

import base64
import sys
import time
from typing import Optional

import requests

BASE_URL = "http://localhost:8000"
API_BASE = f"{BASE_URL}/api"
POLL_INTERVAL_SECONDS = 2
POLL_LIMIT_SECONDS = 420


class Colors:
    GREEN = '\033[92m'
    RED = '\033[91m'
    YELLOW = '\033[93m'
    BLUE = '\033[94m'
    END = '\033[0m'

def print_step(name: str):
    print(f"\n{Colors.BLUE}=== {name} ==={Colors.END}")

def print_success(msg: str):
    print(f"{Colors.GREEN}✓ {msg}{Colors.END}")

def print_error(msg: str):
    print(f"{Colors.RED}✗ {msg}{Colors.END}")

def print_info(msg: str):
    print(f"{Colors.YELLOW}ℹ {msg}{Colors.END}")

def check_health() -> bool:
    print_step("Health Checks")
    try:
        r = requests.get(f"{BASE_URL}/health")
        assert r.status_code == 200
        data = r.json()
        assert data["status"] == "healthy"
        print_success("GET /health")
        print_info(f"Job store: {data.get('job_store')}, storage: {data.get('storage')}")
    except Exception as e:
        print_error(f"GET /health - {str(e)}")
        return False
    return True

def submit(image_path: str) -> Optional[str]:
    print_step("Submit")
    with open(image_path, "rb") as f:
        image_base64 = base64.b64encode(f.read()).decode("ascii")
    try:
        r = requests.post(
            f"{API_BASE}/transformations",
            json={"image_base64": image_base64, "first_name": "Smoke", "creativity_level": "balanced"},
        )
        assert r.status_code == 201, f"{r.status_code}: {r.text[:200]}"
        data = r.json()
        assert data["status"] == "processing"
        print_success(f"POST /transformations - {data['id']}")
        return data["id"]
    except Exception as e:
        print_error(f"POST /transformations - {str(e)}")
        return None

def process_and_poll(job_id: str) -> bool:
    print_step("Process")
    try:
        r = requests.post(f"{API_BASE}/process/{job_id}", timeout=POLL_LIMIT_SECONDS)
        print_info(f"POST /process/{job_id} - {r.status_code}: {r.json().get('status')}")
    except requests.Timeout:
        print_info("POST /process timed out client-side; polling instead")

    # A second trigger must not start another run
    r = requests.post(f"{API_BASE}/process/{job_id}")
    print_info(f"Repeat trigger - {r.status_code}: {r.json().get('message')}")

    print_step("Poll")
    deadline = time.time() + POLL_LIMIT_SECONDS
    while time.time() < deadline:
        r = requests.get(f"{API_BASE}/transformations/{job_id}")
        data = r.json()
        if data["status"] == "processing":
            assert "no-store" in r.headers.get("Cache-Control", "")
            time.sleep(POLL_INTERVAL_SECONDS)
            continue
        if data["status"] == "completed":
            print_success(f"Completed: after={data['after_image']} audio={data.get('audio')}")
            print_info(data["plan"][:200])
            return True
        print_error(f"Failed: {data.get('error')}")
        return False
    print_error("Timed out waiting for a terminal status")
    return False

def main():
    if len(sys.argv) < 2:
        print_error("Usage: python -m scripts.smoke_api path/to/room.jpg")
        sys.exit(2)

    print_info(f"Testing against: {BASE_URL}")
    if not check_health():
        print_error("\nHealth checks failed. Is the API running?")
        sys.exit(1)

    job_id = submit(sys.argv[1])
    if not job_id:
        sys.exit(1)

    if not process_and_poll(job_id):
        sys.exit(1)

    print(f"\n{Colors.GREEN}Smoke check passed{Colors.END}\n")

if __name__ == "__main__":
    main()
