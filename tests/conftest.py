"""Pytest configuration and shared fixtures."""

import pytest


@pytest.fixture
def sample_payments_page() -> dict:
    """One page of the Whop payments list endpoint."""
    return {
        "data": [
            {"id": "pay_001", "status": "paid", "substatus": "succeeded", "total": 19.99},
            {"id": "pay_002", "status": "paid", "substatus": "succeeded", "total": 49.0},
            {"id": "pay_003", "status": "open", "substatus": "pending", "total": 9.99},
        ],
        "page_info": {"current_page": 1, "total_pages": 1},
    }


@pytest.fixture
def sample_membership() -> dict:
    """Single Whop membership resource."""
    return {
        "id": "mem_001",
        "status": "active",
        "member": {"id": "mber_001"},
        "plan": {"id": "plan_001"},
        "created_at": "2024-01-01T00:00:00Z",
    }
