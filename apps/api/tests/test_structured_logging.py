from uuid import uuid4

from ritmo.core.structured_logging import build_log_context, mask_email


def test_build_log_context_only_includes_provided_fields():
    org_id = uuid4()

    context = build_log_context(org_id=org_id, worker_id="w-1", run_id=0)

    assert context == {"org_id": str(org_id), "worker_id": "w-1", "run_id": 0}


def test_build_log_context_empty():
    assert build_log_context() == {}


def test_mask_email():
    assert mask_email("ana.silva@example.com") == "ana...@example.com"
    assert mask_email("") == ""
    assert mask_email(None) == ""
    assert mask_email("localonly") == "loc..."
