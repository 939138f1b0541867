"""
Tests for audit logging.
"""

from audit import get_audit_logs, log_action


class TestAuditLog:
    """Test writing and reading audit entries."""

    def test_log_action(self, db):
        """Test an entry is stored with its details."""
        log_action(1, "adif_import", details="3/3 imported", ip_address="127.0.0.1")
        logs = get_audit_logs()

        assert len(logs) == 1
        assert logs[0]["user_id"] == 1
        assert logs[0]["action"] == "adif_import"
        assert logs[0]["details"] == "3/3 imported"
        assert logs[0]["ip_address"] == "127.0.0.1"
        assert logs[0]["timestamp"]

    def test_newest_first(self, db):
        log_action(1, "adif_import")
        log_action(1, "adif_export")

        assert [log["action"] for log in get_audit_logs()] == ["adif_export", "adif_import"]

    def test_filter_by_action(self, db):
        log_action(1, "adif_import")
        log_action(1, "adif_export")
        log_action(2, "adif_export")

        assert len(get_audit_logs(action="adif_export")) == 2
        assert len(get_audit_logs(action="adif_export", user_id=2)) == 1

    def test_limit_and_offset(self, db):
        for i in range(5):
            log_action(1, "adif_validate", details=str(i))

        page = get_audit_logs(limit=2, offset=1)
        assert [log["details"] for log in page] == ["3", "2"]
