"""
Smoke tests for the demo scenarios run by `cli.py demo`.
"""

from dispatch.demo import run_assignment_demo, run_lifecycle_demo, run_quiet_hours_demo
from domain.models import AssignmentStatus, OrderStatus


def test_lifecycle_demo(capsys):
    runtime = run_lifecycle_demo()

    assert runtime.state_machine.current_status("ord-001") == OrderStatus.DELIVERED
    assert "Rejected:" in capsys.readouterr().out


def test_assignment_demo():
    runtime = run_assignment_demo()

    request = runtime.assignment_queue.get_assignment_status("ord-002")
    assert request.status == AssignmentStatus.ACCEPTED
    assert request.assigned_rider_id == "rider-002"


def test_quiet_hours_demo(capsys):
    runtime = run_quiet_hours_demo()

    assert runtime.data_store.get_notifications(order_id="ord-002", recipient_id="cust-002") == []
    assert '"type":"order_update"' in capsys.readouterr().out
